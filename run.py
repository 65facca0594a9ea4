#!/usr/bin/env python3
"""
Run script for the Project Allocation Portal
"""
import uvicorn

from portal.config.settings import settings
from portal.main import app

if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port, reload=settings.debug)
