import logging
import time

logger = logging.getLogger('request_logger')

# Requests slower than this are logged as warnings; the tick endpoints fan out to providers
SLOW_REQUEST_SECONDS = 2.0


class RequestLoggingMiddleware:
    """Logs every API request with its status, duration and the client it concerns."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        start_time = time.monotonic()

        response = self.get_response(request)

        duration = time.monotonic() - start_time
        response['X-Request-Duration'] = f"{duration:.3f}"

        message = (
            f"Request: {request.method} {request.path} "
            f"Status: {response.status_code} "
            f"Duration: {duration:.2f}s"
        )
        client = request.GET.get('user')
        if client:
            message += f" User: {client}"

        if response.status_code >= 500:
            logger.error(message)
        elif duration >= SLOW_REQUEST_SECONDS:
            logger.warning(f"Slow request. {message}")
        else:
            logger.info(message)

        return response
