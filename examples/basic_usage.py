"""
Example: Basic OData usage with odata_engine
============================================

This example serves a small seeded catalogue through the OData layer,
first by calling the request handler directly and then over HTTP.
"""

import asyncio
import json

from odata_engine import InMemoryEngine, ODataRequest, ODataRequestHandler, ODataServiceConfig


def build_catalogue() -> InMemoryEngine:
    """Register two object types and seed a few records."""
    engine = InMemoryEngine([
        {"name": "Categories", "fields": {"name": {"type": "text", "required": True}}},
        {
            "name": "Products",
            "fields": {
                "name": {"type": "text", "required": True},
                "price": {"type": "currency"},
                "category": {"type": "lookup", "reference": "Categories"},
            },
        },
    ])
    engine.seed("Categories", [{"_id": "c1", "name": "Electronics"}, {"_id": "c2", "name": "Books"}])
    engine.seed("Products", [
        {"_id": "p1", "name": "Laptop", "price": 1200, "category": "c1"},
        {"_id": "p2", "name": "Phone", "price": 800, "category": "c1"},
        {"_id": "p3", "name": "Novel", "price": 15, "category": "c2"},
    ])
    return engine


async def example_handler():
    """Query and update through the protocol-neutral handler."""
    engine = build_catalogue()
    handler = ODataRequestHandler(ODataServiceConfig(), engine, engine)

    response = await handler.handle(ODataRequest(
        "GET",
        "/Products",
        "$filter=price gt 100&$orderby=price desc&$expand=category($select=name)&$count=true",
    ))
    body = json.loads(response.body)
    print("Matches:", body["@odata.count"])
    for product in body["value"]:
        print(" ", product["name"], product["price"], product["category"]["name"])

    current = await handler.handle(ODataRequest("GET", "/Products('p3')"))
    etag = current.headers["ETag"]
    updated = await handler.handle(ODataRequest(
        "PATCH", "/Products('p3')", body=json.dumps({"price": 12}), headers={"If-Match": etag},
    ))
    print("PATCH:", updated.status, updated.headers["ETag"])

    stale = await handler.handle(ODataRequest(
        "PATCH", "/Products('p3')", body=json.dumps({"price": 10}), headers={"If-Match": etag},
    ))
    print("Stale PATCH:", stale.status, json.loads(stale.body)["error"]["code"])


def example_server():
    """Serve the catalogue over HTTP on port 8080."""
    import uvicorn

    from odata_engine.api import create_app

    app = create_app(ODataServiceConfig(), engine=build_catalogue())
    uvicorn.run(app, host="127.0.0.1", port=8080)


if __name__ == "__main__":
    asyncio.run(example_handler())
    # Uncomment to serve over HTTP:
    # example_server()
