"""
Mock user store speaking the json-server REST dialect for ``/users`` and ``/tokens``.
"""

import uuid
from typing import Any, Dict, List

from fastapi import Body, FastAPI, HTTPException, Request

from shared.logging import get_logger

COLLECTIONS = ("users", "tokens")


class MockUserStoreServer:
    """In-memory json-server style store."""

    def __init__(self, port: int = 4000):
        self.port = port
        self.logger = get_logger("mock.user_store")
        self.app = FastAPI(title="Mock User Store", version="1.0.0")
        self.data: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in COLLECTIONS}

        self._setup_routes()

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        if name not in self.data:
            raise HTTPException(status_code=404, detail="Collection not found")
        return self.data[name]

    def _setup_routes(self):
        """Set up json-server routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "mock-user-store",
                "collections": {name: len(records) for name, records in self.data.items()}
            }

        @self.app.get("/{collection}")
        async def list_records(collection: str, request: Request) -> List[Dict[str, Any]]:
            """List records, filtered by exact match on every query parameter."""
            records = list(self._collection(collection).values())
            filters = {k: v for k, v in request.query_params.items() if not k.startswith("_")}
            matches = [
                record for record in records
                if all(str(record.get(field)) == value for field, value in filters.items())
            ]

            limit = request.query_params.get("_limit")
            if limit is not None:
                matches = matches[:int(limit)]
            return matches

        @self.app.get("/{collection}/{record_id}")
        async def get_record(collection: str, record_id: str):
            """Get record by ID."""
            record = self._collection(collection).get(record_id)
            if record is None:
                raise HTTPException(status_code=404, detail="Not found")
            return record

        @self.app.post("/{collection}", status_code=201)
        async def create_record(collection: str, payload: Dict[str, Any] = Body(...)):
            """Create a record, assigning an id when the payload has none."""
            records = self._collection(collection)
            record_id = str(payload.get("id") or uuid.uuid4().hex[:8])
            if record_id in records:
                raise HTTPException(status_code=500, detail="Insert failed, duplicate id")
            record = {**payload, "id": record_id}
            records[record_id] = record
            self.logger.info("Record created", collection=collection, record_id=record_id)
            return record

        @self.app.patch("/{collection}/{record_id}")
        async def update_record(collection: str, record_id: str, payload: Dict[str, Any] = Body(...)):
            """Merge fields into an existing record."""
            records = self._collection(collection)
            if record_id not in records:
                raise HTTPException(status_code=404, detail="Not found")
            records[record_id] = {**records[record_id], **payload, "id": record_id}
            self.logger.info("Record updated", collection=collection, record_id=record_id)
            return records[record_id]

        @self.app.delete("/{collection}/{record_id}")
        async def delete_record(collection: str, record_id: str):
            """Delete record by ID."""
            records = self._collection(collection)
            if records.pop(record_id, None) is None:
                raise HTTPException(status_code=404, detail="Not found")
            return {}


def create_app():
    """Create mock user store application."""
    server = MockUserStoreServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=4000)
