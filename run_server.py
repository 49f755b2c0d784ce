#!/usr/bin/env python3
"""
Attendance sync server runner
"""

if __name__ == "__main__":
    try:
        print("🚀 Starting Marshalats Attendance Sync Server...")
        import uvicorn
        from server import app
        from utils.config import HOST, PORT, LOG_LEVEL

        print(f"🌐 Starting server on http://{HOST}:{PORT}")
        uvicorn.run(
            app,
            host=HOST,
            port=PORT,
            log_level=LOG_LEVEL.lower(),
            access_log=True
        )
    except Exception as e:
        print(f"❌ Server Error: {e}")
        import traceback
        traceback.print_exc()
