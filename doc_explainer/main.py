from __future__ import annotations

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from doc_explainer.assistant import DocAssistant
from doc_explainer.errors import CrawlError, LLMError
from doc_explainer.links import normalize_url
from doc_explainer.schemas import (
    ChatDocsRequest,
    ChatDocsResponse,
    ErrorResponse,
    ExtractFileResponse,
    Mode,
    ScrapeDocsRequest,
    ScrapeDocsResponse,
    TtsRequest,
    TtsResponse,
    TtsScriptRequest,
    TtsScriptResponse,
)

SCRAPE_FAILED = "Failed to analyze documentation. Please check the URL and try again."
CHAT_FAILED = "Failed to process your message. Please try again."
EXTRACT_FAILED = "Failed to extract text from file"

ENDPOINTS = ["/health", "/scrape-docs", "/chat-docs", "/extract-file", "/generate-tts-script", "/tts"]
ERROR_RESPONSES: dict[int | str, dict] = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
    kind = err.get("type", "")
    if field.startswith("messages") and kind in {"missing", "too_short", "list_type"}:
        return "Messages array is required"
    if field == "file":
        return "No file provided"
    if kind == "missing":
        return f"{field} is required"
    return f"{field}: {err.get('msg')}"


def create_app(assistant: DocAssistant | None = None) -> FastAPI:
    assistant = assistant if assistant is not None else DocAssistant()

    app = FastAPI(title="Doc Explainer API", version="0.3.0")
    app.state.assistant = assistant

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse({"error": _validation_message(exc)}, status_code=400)

    @app.get("/")
    def root() -> dict:
        return {"ok": True, "service": "doc-explainer", "endpoints": ENDPOINTS, "docs": "/docs"}

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    @app.post("/scrape-docs", response_model=ScrapeDocsResponse, responses=ERROR_RESPONSES)
    async def scrape_docs(req: ScrapeDocsRequest) -> ScrapeDocsResponse:
        if not req.url.lower().startswith(("http://", "https://")) or normalize_url(req.url) is None:
            raise HTTPException(status_code=400, detail="A valid http(s) URL is required")
        try:
            result = await assistant.analyze_docs(req.url, req.mode)
        except CrawlError as e:
            logger.error(f"Error scraping docs: {e}")
            raise HTTPException(status_code=500, detail=SCRAPE_FAILED)
        except Exception:
            logger.exception(f"Unexpected error scraping {req.url}")
            raise HTTPException(status_code=500, detail=SCRAPE_FAILED)
        return ScrapeDocsResponse(insights=result.insights, content=result.content)

    @app.post("/chat-docs", response_model=ChatDocsResponse, responses=ERROR_RESPONSES)
    async def chat_docs(req: ChatDocsRequest) -> ChatDocsResponse:
        try:
            text = await assistant.chat(req.messages, req.mode, url=req.url, doc_content=req.docContent)
        except LLMError as e:
            logger.error(f"Error in chat: {e}")
            raise HTTPException(status_code=500, detail=CHAT_FAILED)
        except Exception:
            logger.exception("Unexpected error in chat")
            raise HTTPException(status_code=500, detail=CHAT_FAILED)
        return ChatDocsResponse(response=text)

    @app.post(
        "/extract-file",
        response_model=ExtractFileResponse,
        response_model_exclude_none=True,
        responses=ERROR_RESPONSES,
    )
    async def extract_file(
        file: UploadFile = File(...),
        mode: Mode | None = Form(None),
        persona: Mode | None = Form(None),
    ) -> ExtractFileResponse:
        # Older clients send the mode as "persona".
        mode = mode or persona or Mode.dev
        try:
            data = await file.read()
            extracted = await assistant.extract_file(
                file.filename or "upload", data, file.content_type or "", mode
            )
        except Exception:
            logger.exception(f"Error extracting file {file.filename}")
            raise HTTPException(status_code=500, detail=EXTRACT_FAILED)
        return ExtractFileResponse(text=extracted.text, fullContent=extracted.full_content)

    @app.post("/generate-tts-script", response_model=TtsScriptResponse, responses=ERROR_RESPONSES)
    async def generate_tts_script(req: TtsScriptRequest) -> TtsScriptResponse:
        return TtsScriptResponse(script=await assistant.tts_script(req.content))

    @app.post("/tts", response_model=TtsResponse, responses=ERROR_RESPONSES)
    def tts(req: TtsRequest) -> TtsResponse:
        return assistant.tts(req.text, req.voice)

    return app


app = create_app()
