import re
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from pymongo import DESCENDING, ReturnDocument

from database import create_document, db
from schemas import Blog as BlogSchema
from utils import now_utc, oid, paginate, serialize_doc

router = APIRouter(prefix="/blog", tags=["blog"])


class BlogUpdateBody(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    imageUrl: Optional[str] = None


def get_blog(blog_id: str) -> dict:
    blog = db["blog"].find_one({"_id": oid(blog_id)})
    if not blog:
        raise HTTPException(status_code=404, detail="Blog not found")
    return blog


@router.post("/", status_code=201)
def create_blog(body: BlogSchema):
    blog_id = create_document("blog", body)
    return {"success": True, "data": serialize_doc(get_blog(blog_id))}


@router.get("/")
def list_blogs(page: int = 1, limit: int = 10):
    blogs, pagination = paginate(db["blog"], {}, page, limit, sort=[("createdAt", DESCENDING)])
    return {"success": True, "data": serialize_doc(blogs), "pagination": pagination}


@router.get("/recommend")
def recommend_blogs(title: Optional[str] = None, limit: int = 10):
    if not title:
        raise HTTPException(status_code=400, detail="Title search parameter is required")
    limit = max(limit, 1)
    blogs = list(
        db["blog"].find({"title": {"$regex": re.escape(title), "$options": "i"}})
        .sort("createdAt", DESCENDING)
        .limit(limit)
    )
    return {
        "success": True,
        "searchedTitle": title,
        "totalResults": len(blogs),
        "limit": limit,
        "data": serialize_doc(blogs),
    }


@router.get("/{blog_id}")
def blog_by_id(blog_id: str):
    return {"success": True, "data": serialize_doc(get_blog(blog_id))}


@router.post("/update/{blog_id}")
def update_blog(blog_id: str, body: BlogUpdateBody):
    update = body.model_dump(exclude_none=True)
    update["updatedAt"] = now_utc()
    blog = db["blog"].find_one_and_update(
        {"_id": oid(blog_id)}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not blog:
        raise HTTPException(status_code=404, detail="Blog not found")
    return {"success": True, "data": serialize_doc(blog)}


@router.post("/delete/{blog_id}")
def delete_blog(blog_id: str):
    res = db["blog"].delete_one({"_id": oid(blog_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Blog not found")
    return {"success": True, "data": {"message": "Blog deleted successfully"}}
