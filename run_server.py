import uvicorn
import os
from gemstudio.config.settings import settings

if __name__ == "__main__":
    # Ensure run directories exist
    os.makedirs(settings.output_root, exist_ok=True)

    print(f"🚀 Starting Gem Studio API on {settings.api_host}:{settings.api_port}...")
    uvicorn.run(
        "api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True
    )
