"""
Lambda Tracer Demo - Instrumented Handler
Deploy as the handler of a Python Lambda function (``lambda_handler.handler``).
Every outbound call made through ``client`` becomes an http span under the
invocation; set RETURN_ERROR=true to see a failing invocation recorded.
"""
import os

import httpx

from lambda_tracer import TracingTransport, init, instrument

init(token="<insert your token>", debug=True)

client = httpx.Client(transport=TracingTransport(), timeout=5.0)


@instrument
def handler(event, context):
    """Greets ``event["name"]`` after a couple of outbound calls."""
    client.get("https://checkip.amazonaws.com/")
    client.post("https://httpbin.org/post", json={"name": event.get("name", "")})

    body = f"Hello {event.get('name', 'world')}!"
    if os.environ.get("RETURN_ERROR", "").lower() in ("true", "1", "yes"):
        raise RuntimeError("failed error")
    return {"statusCode": 200, "body": body}


if __name__ == "__main__":
    # Local run: no Lambda context, spans land in LAMBDA_TRACER_SPANS_DIR
    print(handler({"name": "local"}, None))
