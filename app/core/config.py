from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    
    # Fallbacks for local/nextjs envs
    NEXT_PUBLIC_SUPABASE_URL: str = ""
    SUPABASE_PUBLIC_ANON_KEY: str = ""
    
    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    
    # Rating refresh worker
    RATING_QUEUE_NAME: str = "ratings"
    # Max seconds a refresh may hold the collection lock
    RATING_LOCK_TIMEOUT_SECONDS: int = 60
    # Max seconds a refresh waits for another refresh of the same collection
    RATING_LOCK_WAIT_SECONDS: int = 120
    
    # Rate Limiting
    BATTLE_RATE_LIMIT: str = "120/minute"
    
    BACKEND_CORS_ORIGINS: list[str] = ["*"]
    
    @property
    def effective_supabase_url(self) -> str:
        return self.SUPABASE_URL or self.NEXT_PUBLIC_SUPABASE_URL
        
    @property
    def effective_supabase_key(self) -> str:
        return self.SUPABASE_SERVICE_ROLE_KEY or self.SUPABASE_PUBLIC_ANON_KEY

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
