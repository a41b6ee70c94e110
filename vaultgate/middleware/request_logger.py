# vaultgate/middleware/request_logger.py
import logging
import time
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from vaultgate.core.config import VISITOR_COOKIE

logger = logging.getLogger("vaultgate.http")


class RequestLoggerMiddleware:
    """
    Logs every HTTP request with:
      - method, path, status, duration
      - X-Req-Id (from client) and the visitor cookie

    Bodies are not logged: lead forms carry contact details.
    """
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        start = time.time()
        rid = request.headers.get("x-req-id", "-")
        vid = request.cookies.get(VISITOR_COOKIE, "-")
        path = request.url.path
        status = {"code": 0}

        async def send_wrapper(message: Message):
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
            await send(message)

        logger.info("[HTTP ►] rid=%s vid=%s %s %s", rid, vid, request.method, path)
        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            dur_ms = (time.time() - start) * 1000
            logger.info("[HTTP ◄] rid=%s vid=%s %s %s done in %.1fms", rid, vid, path, status["code"], dur_ms)
