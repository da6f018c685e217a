from abc import ABC, abstractmethod
from datetime import datetime

from ogpreview.modules.persistence.schemas import ClassificationValues
from ogpreview.modules.scraper.schemas import Performance, ScrapedMetadata, ScrapeTarget


class MetadataContract(ABC):
    @abstractmethod
    async def save_metadata(
        self,
        target: ScrapeTarget,
        metadata: ScrapedMetadata,
        scraped_at: datetime,
        performance: Performance,
    ) -> bool: ...


class ClassificationValuesContract(ABC):
    @abstractmethod
    async def get_existing_classification_values(self) -> ClassificationValues: ...
