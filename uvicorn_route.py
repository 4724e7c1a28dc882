#!/usr/bin/env python3
import uvicorn
from libris.app import app
from libris.configs import HOST, PORT

if __name__ == "__main__":
    print(f"Starting uvicorn server on port {PORT}...")
    uvicorn.run(app, host=HOST, port=PORT, log_level="info")
