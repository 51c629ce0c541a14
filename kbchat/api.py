"""FastAPI endpoints over ``ChatbotService``."""

from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, File, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from .config import config
from .errors import InvalidInput, KBChatError, NotFound, Unauthorized
from .service import ChatbotService, build_service

logger = config.get_logger(__name__)

UPLOAD_SUCCESS_MESSAGE = "File uploaded and processed successfully"


class ChatRequest(BaseModel):
    history: list[Any] = Field(validation_alias=AliasChoices("history", "messages"))


class InquiryRequest(BaseModel):
    thread_id: str = Field(validation_alias=AliasChoices("threadId", "thread_id"))
    email: str
    inquiry: str = Field(validation_alias=AliasChoices("inquiry", "message"))


def status_for(exc: KBChatError) -> int:
    if isinstance(exc, Unauthorized):
        return 403
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, InvalidInput):
        return 400
    return 500


def get_service(request: Request) -> ChatbotService:
    return request.app.state.service


def caller_token(
    token: Annotated[str | None, Header(alias=config.API_TOKEN_HEADER)] = None,
) -> str | None:
    return token


Service = Annotated[ChatbotService, Depends(get_service)]
Token = Annotated[str | None, Depends(caller_token)]


def create_app(service: ChatbotService | None = None) -> FastAPI:
    """Build the HTTP application.

    Args:
        service: Service to expose. Built from the configuration at startup
            when omitted.

    Returns:
        The FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup initiated")
        if getattr(app.state, "service", None) is None:
            config.validate()
            app.state.service = build_service()
        yield
        logger.info("Application shutdown")

    # Interactive docs are only served outside production.
    docs_url = None if config.is_production() else "/docs"
    app = FastAPI(
        title="KBChat",
        version="1.0",
        lifespan=lifespan,
        docs_url=docs_url,
        redoc_url=None,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(KBChatError)
    async def handle_kbchat_error(request: Request, exc: KBChatError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse({"error": exc.message}, status_code=status)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.info("Rejected request to %s: %s", request.url.path, exc.errors())
        return JSONResponse({"error": InvalidInput.default_message}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/models")
    def list_models(service: Service, token: Token) -> dict[str, list[str]]:
        return {"models": service.list_models(token)}

    @app.get("/api/chatbots/{chatbot_id}")
    def get_chatbot(chatbot_id: str, service: Service, token: Token) -> dict[str, Any]:
        return {"chatbot": service.get_chatbot(token, chatbot_id).to_dict()}

    @app.get("/api/chatbots/{chatbot_id}/files")
    def list_files(chatbot_id: str, service: Service, token: Token) -> dict[str, Any]:
        documents = service.list_documents(token, chatbot_id)
        return {
            "files": [
                {
                    "id": document.id,
                    "filename": document.filename,
                    "created_at": document.created_at,
                }
                for document in documents
            ]
        }

    @app.post("/api/chatbots/{chatbot_id}/upload")
    def upload(
        chatbot_id: str,
        service: Service,
        token: Token,
        file: Annotated[UploadFile | None, File()] = None,
    ) -> dict[str, Any]:
        service.get_chatbot(token, chatbot_id)
        filename = file.filename if file is not None else None
        data = file.file.read() if file is not None else None
        result = service.upload(token, chatbot_id, filename, data)
        return {
            "message": UPLOAD_SUCCESS_MESSAGE,
            "document_id": result.document.id,
            "passage_ids": result.passage_ids,
        }

    @app.post("/api/chatbots/{chatbot_id}/chat")
    def chat(
        chatbot_id: str, body: ChatRequest, service: Service, token: Token
    ) -> dict[str, Any]:
        reply = service.chat(token, chatbot_id, body.history)
        return {"message": reply.to_dict()}

    @app.get("/api/chatbots/{chatbot_id}/inquiries")
    def list_inquiries(
        chatbot_id: str, service: Service, token: Token
    ) -> dict[str, Any]:
        inquiries = service.list_inquiries(token, chatbot_id)
        return {"inquiries": [inquiry.to_dict() for inquiry in inquiries]}

    @app.post("/api/chatbots/{chatbot_id}/inquiries", status_code=201)
    def submit_inquiry(
        chatbot_id: str, body: InquiryRequest, service: Service, token: Token
    ) -> dict[str, Any]:
        inquiry = service.submit_inquiry(
            token, chatbot_id, body.thread_id, body.email, body.inquiry
        )
        return {"inquiry": inquiry.to_dict()}

    return app


app = create_app()
