from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

TITLE_MAX_LENGTH = 200
SOURCE_MAX_LENGTH = 50


class Category(str, Enum):
    ALL = "all"
    TECH = "tech"
    FINANCE = "finance"
    STOCK = "stock"
    VC = "vc"
    GEO = "geo"
    COMMODITY = "commodity"


# Display names and icons shown on the dashboard's category tabs
CATEGORY_LABELS = {
    Category.ALL: ("全部", "📰"),
    Category.TECH: ("科技/AI", "🤖"),
    Category.FINANCE: ("金融/宏观", "💹"),
    Category.STOCK: ("美股/港股", "📈"),
    Category.VC: ("风投", "🚀"),
    Category.GEO: ("国际政治", "🌍"),
    Category.COMMODITY: ("大宗商品", "🛢️"),
}


class NewsItem(BaseModel):
    """
    Normalized feed entry.
    Serialized by alias (title/url/source/date/category) for the dashboard page.
    """
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    url: str = Field(min_length=1)
    source_name: str = Field(alias="source", max_length=SOURCE_MAX_LENGTH)
    published_at: datetime = Field(alias="date")
    category: Category = Category.ALL


class NewsSnapshot(BaseModel):
    news: List[NewsItem]
    error: Optional[str] = None
