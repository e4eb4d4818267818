"""
ASGI entry point for the DisasterShield FastAPI application.
Process managers such as Elastic Beanstalk look for the 'application' object.
"""

from disastershield.main import app

application = app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(application, host="0.0.0.0", port=8000)
