"""
Pytest configuration and shared fixtures.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from odata_engine.api.gateway import create_app
from odata_engine.core.config import ODataServiceConfig
from odata_engine.core.memory import InMemoryEngine
from odata_engine.odata.handler import ODataRequestHandler
from odata_engine.odata.messages import ODataRequest


OBJECTS = [
    {
        "name": "Categories",
        "fields": {"name": {"type": "text", "required": True}},
    },
    {
        "name": "Products",
        "fields": {
            "name": {"type": "text", "required": True},
            "price": {"type": "currency"},
            "in_stock": {"type": "boolean"},
            "category": {"type": "lookup", "reference": "Categories"},
        },
    },
    {"name": "Countries", "fields": {"name": {"type": "text"}}},
    {
        "name": "Companies",
        "fields": {
            "name": {"type": "text"},
            "country": {"type": "lookup", "reference": "Countries"},
        },
    },
    {
        "name": "Customers",
        "fields": {
            "name": {"type": "text"},
            "email": {"type": "email"},
            "company": {"type": "master_detail", "reference": "Companies"},
        },
    },
    {
        "name": "Orders",
        "fields": {
            "number": {"type": "text"},
            "quantity": {"type": "number"},
            "customer": {"type": "lookup", "reference": "Customers"},
            "product": {"type": "lookup", "reference": "Products"},
        },
    },
]


@pytest.fixture
def engine():
    """In-memory engine seeded with a small catalogue."""
    eng = InMemoryEngine(OBJECTS)
    eng.seed("Categories", [
        {"_id": "c1", "name": "Electronics"},
        {"_id": "c2", "name": "Books"},
    ])
    eng.seed("Products", [
        {"_id": "p1", "name": "Laptop", "price": 1200, "in_stock": True, "category": "c1"},
        {"_id": "p2", "name": "Phone", "price": 800, "in_stock": True, "category": "c1"},
        {"_id": "p3", "name": "Novel", "price": 15, "in_stock": False, "category": "c2"},
        {"_id": "p4", "name": "Tablet", "price": 450, "in_stock": True, "category": "c1"},
        {"_id": "p5", "name": "Cookbook", "price": 30, "in_stock": True, "category": "c2"},
    ])
    eng.seed("Countries", [{"_id": "co1", "name": "Germany"}])
    eng.seed("Companies", [{"_id": "cm1", "name": "Acme", "country": "co1"}])
    eng.seed("Customers", [
        {"_id": "cu1", "name": "John Smith", "email": "john@example.com", "company": "cm1"},
        {"_id": "cu2", "name": "Jane Doe", "email": "jane@example.com", "company": "cm1"},
    ])
    eng.seed("Orders", [
        {"_id": "o1", "number": "SO-1", "quantity": 1, "customer": "cu1", "product": "p1"},
        {"_id": "o2", "number": "SO-2", "quantity": 2, "customer": "cu2", "product": "p3"},
    ])
    return eng


@pytest.fixture
def config():
    return ODataServiceConfig(base_path="/odata")


@pytest.fixture
def handler(config, engine):
    return ODataRequestHandler(config, engine, engine)


@pytest.fixture
def call(handler):
    """Run one request through the handler synchronously."""

    def _call(method, path, query="", body=None, headers=None):
        return asyncio.run(handler.handle(ODataRequest(method, path, query, headers or {}, body)))

    return _call


@pytest.fixture
def client(config, engine):
    """FastAPI test client over the seeded engine."""
    return TestClient(create_app(config, engine=engine))
