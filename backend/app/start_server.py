"""
Startup script for the Site Memory backend
Run from backend/app so that 'main' and 'site_memory' are importable
"""

import os

# Force unbuffered output
os.environ['PYTHONUNBUFFERED'] = '1'

if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))

    print("\n Starting Site Memory Server...", flush=True)
    print(f" Server will run on: http://localhost:{port}", flush=True)
    print(f" API Docs available at: http://localhost:{port}/docs", flush=True)
    print("\n" + "="*50, flush=True)

    # reload=False keeps logs in this terminal
    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=False,
        log_level="info",
        access_log=True
    )
