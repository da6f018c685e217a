from pydantic import BaseModel


class ClassificationValues(BaseModel):
    """Distinct classification values already present on stored sites."""

    industries: list[str] = []
    categories: list[str] = []
    countries: list[str] = []
    languages: list[str] = []
    company_sizes: list[str] = []
