"""检索增强：外部搜索 + 引用说明注入。"""

from assistant_core.retrieval.augmenter import Augmentation, RetrievalAugmenter
from assistant_core.retrieval.client import HttpSearchClient, SearchClient, SearchResponse

__all__ = ["Augmentation", "HttpSearchClient", "RetrievalAugmenter", "SearchClient", "SearchResponse"]
