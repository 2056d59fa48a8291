import copy
import logging
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from portalscraper import (
    AuthenticationError,
    Config,
    Credentials,
    EventScraper,
    build_email_html,
    coerce_headless,
    config_from_env,
)

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


class ScrapeRequest(BaseModel):
    email: str = ""
    password: str = Field(default="", repr=False)
    max: int | None = None
    headless: bool | str | None = None


class EmailRequest(BaseModel):
    events: list[dict[str, Any]] = Field(default_factory=list)
    title: str | None = None
    template: str = "insider"


@lru_cache(maxsize=1)
def get_config() -> Config:
    return config_from_env()


server = FastAPI(title="portalscraper")


@server.exception_handler(HTTPException)
def _error_body(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@server.exception_handler(RequestValidationError)
def _invalid_body(_request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        where = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{where}: {err.get('msg')}" if where else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"error": "Invalid request: " + "; ".join(problems)})


@server.get("/api/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@server.post("/api/scrape")
def scrape(
    body: ScrapeRequest,
    cfg: Annotated[Config, Depends(get_config)],
):
    if not body.email or not body.password:
        raise HTTPException(400, "Missing email or password")
    if not (cfg.login_url and cfg.events_url):
        raise HTTPException(500, "Portal URLs are not configured (LOGIN_URL, EVENTS_URL)")

    # Per-run copy so request overrides never leak into the shared config
    run_cfg = copy.deepcopy(cfg)
    if body.headless is not None:
        run_cfg.headless = coerce_headless(body.headless)

    scraper = EventScraper(run_cfg, Credentials(body.email, body.password))
    try:
        events = scraper.run(body.max)
    except AuthenticationError as exc:
        logger.warning("scrape: %s", exc)
        raise HTTPException(401, str(exc)) from None
    except Exception as exc:
        logger.exception("scrape: extraction failed")
        raise HTTPException(500, str(exc) or exc.__class__.__name__) from None

    logger.info("scrape: returning %s events", len(events))
    return {"events": [e.to_dict() for e in events]}


@server.post("/api/email", response_class=HTMLResponse)
def email(body: EmailRequest) -> HTMLResponse:
    html = build_email_html(body.events, title=body.title, template=body.template)
    return HTMLResponse(html)
