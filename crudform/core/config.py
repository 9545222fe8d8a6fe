from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "crudform"

    DATABASE_URL: str = "sqlite+pysqlite:///./crudform.db"

    S3_ENDPOINT: str = "http://localhost:9000"
    S3_ACCESS_KEY: str = "change_me"
    S3_SECRET_KEY: str = "change_me"
    S3_BUCKET: str = "crudform"
    S3_REGION: str = "us-east-1"
    S3_USE_SSL: bool = False
    UPLOAD_DIRECTORY: str = "files"
    IMAGE_DIRECTORY: str = "images"

    FORM_MAX_NESTING_DEPTH: int = 5
    BATCH_EDIT_SEGMENT: str = "batch-edit"
    FLASH_COOKIE_NAME: str = "crudform_flash"

    MESSAGE_SAVE_SUCCEEDED: str = "Save succeeded"
    MESSAGE_UPDATE_SUCCEEDED: str = "Update succeeded"
    MESSAGE_SAVE_FAILED: str = "Save failed"
    MESSAGE_DELETE_SUCCEEDED: str = "Delete succeeded"
    MESSAGE_DELETE_FAILED: str = "Delete failed"


settings = Settings()
