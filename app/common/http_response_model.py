from typing import Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel

DataT = TypeVar("DataT")


class PageMeta(BaseModel):
    page: int
    page_size: int
    total_pages: int
    total_items: int


class CommonResponse(BaseModel, Generic[DataT]):
    message: str
    success: bool
    payload: Optional[Union[DataT, List[DataT]]] = None
    meta: Optional[PageMeta] = None
