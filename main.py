from fastapi import FastAPI, Request, Depends, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse
from dotenv import load_dotenv
from pathlib import Path
import os
import re
import logging

from detection import (
    DetectionPipeline,
    DetectionRequest,
    DetectionResponse,
    Settings,
    load_settings,
)
from detection.report import ENTRY_DOCUMENT, comparison_url, document_name, rewrite_asset_links

load_dotenv()

# Configure logging to both file and console
LOG_DIR = os.getenv("LOG_DIR", "logs")
os.makedirs(LOG_DIR, exist_ok=True)

# Set log level from environment (default: INFO)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, LOG_LEVEL, logging.INFO)

log_formatter = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

root_logger = logging.getLogger()
root_logger.setLevel(log_level)

# Console handler (for docker logs)
console_handler = logging.StreamHandler()
console_handler.setFormatter(log_formatter)
root_logger.addHandler(console_handler)

# File handler (persistent logs)
log_file = os.path.join(LOG_DIR, "detection.log")
file_handler = logging.FileHandler(log_file, encoding='utf-8')
file_handler.setFormatter(log_formatter)
root_logger.addHandler(file_handler)

# Configure uvicorn loggers to use the same format
for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
    logging.getLogger(name).handlers = [console_handler, file_handler]

logger = logging.getLogger(__name__)
logger.info(f"Logging initialized. Log file: {log_file}")

SERVICE_NAME = "plagiarism-detection-service"
SERVICE_VERSION = "1.0.0"
ANALYZE_PATHS = ("/api/plagiarism/analyze", "/api/jplag/detect")
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

settings = load_settings()
pipeline = DetectionPipeline.from_settings(settings)
logger.info(
    f"Detection configured: language={settings.language}, "
    f"min_token_match={settings.min_token_match}, threshold={settings.similarity_threshold}"
)

app = FastAPI(title="Plagiarism Detection Service", version=SERVICE_VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_settings() -> Settings:
    return settings


def get_pipeline() -> DetectionPipeline:
    return pipeline


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed analyze bodies get the structured failure response with status 400."""
    if request.url.path not in ANALYZE_PATHS:
        return await request_validation_exception_handler(request, exc)

    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    )
    logger.warning(f"Rejected malformed analyze request: {problems}")
    body = DetectionResponse(success=False, message=f"Invalid request: {problems}")
    return JSONResponse(status_code=400, content=body.model_dump(by_alias=True, mode="json"))


def _run_detection(request: DetectionRequest, pipeline: DetectionPipeline) -> JSONResponse:
    logger.info(
        f"Received analysis request for assignment {request.assignment_id} "
        f"({len(request.submissions)} submission(s))"
    )
    response = pipeline.detect(request)
    status_code = 200 if response.success else 400
    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(by_alias=True, mode="json"),
    )


@app.post("/api/plagiarism/analyze")
def analyze(request: DetectionRequest, pipeline: DetectionPipeline = Depends(get_pipeline)):
    return _run_detection(request, pipeline)


@app.post("/api/jplag/detect")
def detect(request: DetectionRequest, pipeline: DetectionPipeline = Depends(get_pipeline)):
    return _run_detection(request, pipeline)


@app.get("/api/plagiarism/health")
@app.get("/api/jplag/health")
def health():
    return {"status": "UP", "service": SERVICE_NAME}


@app.get("/api/plagiarism/info")
def info(settings: Settings = Depends(get_settings)):
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "engine": "JPlag",
        "language": settings.language,
        "fileSuffixes": settings.file_suffixes,
        "minTokenMatch": settings.min_token_match,
        "similarityThreshold": settings.similarity_threshold,
    }


def _check_session_id(session_id: str) -> None:
    if not SESSION_ID_PATTERN.fullmatch(session_id):
        raise HTTPException(status_code=400, detail="Invalid session id")


def _contained_file(root: Path, relative: str) -> Path:
    """Resolve relative under root, refusing anything that escapes it."""
    base = root.resolve()
    target = (base / relative).resolve()
    if os.path.commonpath([str(base), str(target)]) != str(base):
        logger.warning(f"Rejected path outside of {base}: {relative}")
        raise HTTPException(status_code=403, detail="Access denied")
    if not target.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return target


@app.get("/api/plagiarism/comparison/{session_id}/{pair}")
def comparison_metadata(session_id: str, pair: str, settings: Settings = Depends(get_settings)):
    _check_session_id(session_id)
    match = re.fullmatch(r"(\d+)-(\d+)", pair)
    if not match:
        raise HTTPException(status_code=400, detail="Pair must be <id1>-<id2>")

    name = document_name(int(match.group(1)), int(match.group(2)))
    path = settings.comparisons_dir / session_id / name
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Comparison not found")
    return {
        "sessionId": session_id,
        "name": name,
        "url": comparison_url(session_id, name),
        "size": path.stat().st_size,
    }


@app.get("/reports/exists/{session_id}")
def report_exists(session_id: str, settings: Settings = Depends(get_settings)):
    _check_session_id(session_id)
    exists = (settings.reports_dir / session_id / ENTRY_DOCUMENT).is_file()
    return {"sessionId": session_id, "exists": exists}


@app.get("/reports/view/{session_id}", response_class=HTMLResponse)
def view_report(session_id: str, settings: Settings = Depends(get_settings)):
    _check_session_id(session_id)
    entry = settings.reports_dir / session_id / ENTRY_DOCUMENT
    if not entry.is_file():
        raise HTTPException(status_code=404, detail="Report not found")
    content = entry.read_text(encoding="utf-8")
    return HTMLResponse(content=rewrite_asset_links(content, session_id))


@app.get("/reports/files/{session_id}/{file_path:path}")
def report_file(session_id: str, file_path: str, settings: Settings = Depends(get_settings)):
    _check_session_id(session_id)
    return FileResponse(_contained_file(settings.reports_dir / session_id, file_path))


@app.get("/reports/comparison/{session_id}/{name}")
def comparison_document(session_id: str, name: str, settings: Settings = Depends(get_settings)):
    _check_session_id(session_id)
    path = _contained_file(settings.comparisons_dir / session_id, name)
    return FileResponse(path, media_type="text/html")
