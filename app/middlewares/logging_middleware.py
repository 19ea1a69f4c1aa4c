from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import time
import uuid
from typing import Callable
from app.utils.logging_config import (
    get_logger,
    LogContext,
    log_api_access,
    log_security_event,
    log_performance_metric,
)

logger = get_logger(__name__)

SLOW_REQUEST_SECONDS = 1.0


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request id, binds it to the log context and logs each
    request, its response and an access line.
    """

    def __init__(self, app: FastAPI, log_requests: bool = True, log_responses: bool = True):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        client_ip = self.get_client_ip(request)
        user_agent = request.headers.get("user-agent", "unknown")
        path = str(request.url.path)

        with LogContext(req_id=request_id):
            start_time = time.perf_counter()

            if self.log_requests:
                logger.info(
                    f"Incoming request: {request.method} {path}",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "path": path,
                            "query_params": dict(request.query_params),
                            "client_ip": client_ip,
                            "user_agent": user_agent,
                            "action": "request_received",
                        }
                    },
                )

            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"Request failed: {request.method} {path}",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "path": path,
                            "error_type": type(e).__name__,
                            "error_message": str(e),
                            "response_time_seconds": round(time.perf_counter() - start_time, 4),
                            "client_ip": client_ip,
                            "action": "request_failed",
                        }
                    },
                    exc_info=True,
                )
                raise

            status_code = response.status_code
            response_time = time.perf_counter() - start_time
            response.headers["X-Request-ID"] = request_id

            if self.log_responses:
                logger.info(
                    f"Request completed: {request.method} {path} - {status_code}",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "path": path,
                            "status_code": status_code,
                            "response_time_seconds": round(response_time, 4),
                            "client_ip": client_ip,
                            "action": "request_completed",
                        }
                    },
                )

            log_api_access(
                method=request.method,
                path=path,
                status_code=status_code,
                response_time=response_time,
                ip_address=client_ip,
            )

            if response_time > SLOW_REQUEST_SECONDS:
                log_performance_metric(
                    operation=f"{request.method} {path}",
                    duration_seconds=response_time,
                    additional_metrics={"status_code": status_code},
                )

            if status_code in (401, 403):
                log_security_event(
                    event_type="unauthorized_access",
                    ip_address=client_ip,
                    user_agent=user_agent,
                    details={"path": path, "method": request.method, "status_code": status_code},
                )

            return response

    def get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"
