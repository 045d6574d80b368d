import uvicorn

from imageforge.config import settings

if __name__ == "__main__":
    uvicorn.run("imageforge.main:app", host=settings.host, port=settings.port)
