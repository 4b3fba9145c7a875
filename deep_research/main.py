from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deep_research.api.routes import research
from deep_research.config import settings
from deep_research.tools.browser import RenderedPageBrowser


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.page_browser = RenderedPageBrowser()
    yield
    # Shutdown
    await app.state.page_browser.aclose()


app = FastAPI(
    title="Deep Research",
    description="Multi-source web research with cross-referenced confidence levels",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(research.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "deep-research"}
