import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from services import books
from services.errors import BookError, InvalidInput, NotFound
from services.storage import DerivedArtifactStore

logger = logging.getLogger("books.api")
logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI()

store = DerivedArtifactStore()


@app.exception_handler(BookError)
async def book_error_handler(request: Request, exc: BookError):
    if exc.status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"ok": False, "error": exc.message}, status_code=exc.status)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"ok": False, "error": str(exc.detail)}, status_code=exc.status_code)


def current_user(request: Request) -> str:
    """User id set by the authenticating gateway in front of this service."""
    user_id = (request.headers.get(config.USER_HEADER) or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="not_logged_in")
    return user_id


async def read_json(request: Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return data


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/api/books")
def list_books(request: Request):
    user_id = current_user(request)
    items: List[Dict[str, Any]] = books.list_books(user_id, store=store)
    return JSONResponse(
        {"ok": True, "count": len(items), "books": items},
        headers={"Cache-Control": "no-store"},
    )


@app.get("/api/books/{book_id}")
def load_book(book_id: str, request: Request):
    user_id = current_user(request)
    return {"ok": True, "book": books.load_book(user_id, book_id, store=store)}


@app.get("/api/books/{book_id}/edit-state")
def edit_state(book_id: str, request: Request):
    user_id = current_user(request)
    return books.get_edit_state(user_id, book_id, store=store)


@app.post("/api/books/{book_id}/save-edits")
async def save_edits(book_id: str, request: Request):
    """
    Apply a batch of edits.
    POST body: {
        "textEdits": [{"target": "page", "page": 3, "text": "..."}],
        "imageEdits": [{"target": "cover", "newUrl": "https://..."}]
    }
    """
    user_id = current_user(request)
    data = await read_json(request)
    # rendering is blocking work; keep it off the event loop
    return await run_in_threadpool(
        books.apply_edits,
        user_id,
        book_id,
        data.get("textEdits"),
        data.get("imageEdits"),
        store,
    )


@app.post("/api/books/{book_id}/apply-image-edit")
async def apply_image_edit(book_id: str, request: Request):
    """
    Queue an image replacement request; it is fulfilled outside this service.
    POST body: {"target": "page", "page": 2, "instruction": "...", "imageUrl": "..."}
    """
    user_id = current_user(request)
    data = await read_json(request)
    result = await run_in_threadpool(
        books.queue_image_edit,
        user_id,
        book_id,
        data.get("target"),
        data.get("page"),
        data.get("instruction"),
        data.get("imageUrl"),
        store,
    )
    result["newUrl"] = ""
    return result


@app.get("/download/{book_id}")
def download(book_id: str, request: Request):
    user_id = current_user(request)
    view = books.load_book(user_id, book_id, store=store)
    if view["status"] != "done":
        raise HTTPException(status_code=409, detail="PDF not ready yet")

    pdf_path: Optional[Path] = books.pdf_path_for(user_id, book_id, store=store)
    if pdf_path is None:
        raise NotFound(f"PDF not found for book {book_id}")

    return FileResponse(
        path=str(pdf_path),
        media_type="application/pdf",
        filename=f"livro-{view['dirId']}.pdf",
    )


@app.get("/output/{asset_path:path}")
def serve_asset(asset_path: str, request: Request):
    """
    Serve book images (base and edited) stored under OUTPUT_DIR.
    """
    user_id = current_user(request)
    path = store.url_to_path(f"{store.public_prefix}/{asset_path}")
    if path is None:
        raise InvalidInput("Invalid asset path")
    if not store.can_read(user_id, path):
        raise HTTPException(status_code=404, detail="not found")
    if not path.is_file():
        raise HTTPException(status_code=404, detail="not found")
    if path.suffix.lower() not in (".png", ".jpg", ".jpeg", ".webp", ".pdf"):
        raise HTTPException(status_code=400, detail="Invalid file type")

    return FileResponse(path=str(path), headers={"Cache-Control": "no-store"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api:app", host="0.0.0.0", port=8000, reload=True)
