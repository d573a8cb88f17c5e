from pydantic import BaseModel


class BookmarkInfo(BaseModel):
    book_name: str
    page_title: str
    url: str


class BookmarkResponse(BookmarkInfo):
    token: str
