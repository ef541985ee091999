import time
from functools import wraps
from sanic.request import Request
from sanic import response

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type',
}

async def start_timer(request: Request):
    request.ctx.start_time = time.monotonic()

async def add_server_timing_header(request: Request, res: response.HTTPResponse):
    # e.g. 'Server-Timing: data;dur=0.070,total;dur=0.481'
    duration_ms = (time.monotonic() - request.ctx.start_time) * 1000.0
    res.headers["Server-Timing"] = res.headers.get("Server-Timing", "") + f'total;dur={duration_ms:.3f}'

async def add_cors_headers(request: Request, res: response.HTTPResponse):
    for header, value in CORS_HEADERS.items():
        res.headers.setdefault(header, value)

def measure(handler):
    """Time the business logic of a route into a 'data' Server-Timing entry."""

    @wraps(handler)
    async def wrapper(request, *args, **kwargs):
        start_time = time.perf_counter()

        res = await handler(request, *args, **kwargs)

        duration_ms = (time.perf_counter() - start_time) * 1000.0
        res.headers["Server-Timing"] = f'data;dur={duration_ms:.3f},'

        return res

    return wrapper
