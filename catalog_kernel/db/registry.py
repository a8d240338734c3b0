"""Import every ORM module so ``Base.metadata`` contains all tables."""


def import_all_orm_models() -> None:
    import catalog_ingestion.models.catalog  # noqa: F401
    import catalog_jobs.models.job  # noqa: F401
    import catalog_jobs.models.queue  # noqa: F401
