from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from webground.api.routes import web_search
from webground.config import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield


app = FastAPI(
    title="webground",
    description="Web evidence retrieval for grounding chat answers",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(web_search.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "webground"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("webground.main:app", host="0.0.0.0", port=8000)
