import asyncio
import os
import sys

from gemstudio.config.settings import settings
from gemstudio.core.errors import AccessDenied, GenerationFailed
from gemstudio.core.models import GenerationRequest
from gemstudio.core.persistence import SQLiteProfileStore
from gemstudio.generators.factory import build_backends
from gemstudio.imaging import prep
from gemstudio.pipeline.studio import JewelryStudio
from gemstudio.utils.logger import setup_logging

# Configure Logging
logger = setup_logging(settings.log_level)


async def main():
    """
    Local photoshoot run: one product image in, watermarked angles out.
    Usage: python main.py [image_path] [model description]
    """
    # 1. Initialize
    backends = build_backends(settings)
    store = SQLiteProfileStore(settings.profile_db_path, default_credits=settings.default_credits)
    studio = JewelryStudio(store, backends.image, backends.video, backends.text)

    # 2. Input Data (an example product unless a local file is given)
    if len(sys.argv) > 1:
        source = prep.read_upload(sys.argv[1])
    else:
        source = await studio.load_example("Diamond Ring")
    description = " ".join(sys.argv[2:]) or "Elegant woman in an evening dress, soft studio light"

    # 3. Execute
    try:
        logger.info("🚀 Starting Studio Main Loop...")
        result = await studio.photoshoot("local", GenerationRequest(source=source, description=description))

        logger.info(f"🏆 {len(result.images)} shots delivered ({result.credits_remaining} credits left)")
        for image in result.images:
            path = f"{settings.output_root}/{image.angle_label.replace(' ', '_').lower()}_{image.id[:8]}.png"
            with open(path, "wb") as f:
                f.write(image.download_bytes)
            logger.info(f"Shot: {image.angle_label} -> {path}")
        for failure in result.failures:
            logger.warning(f"Missing: {failure.angle_label} ({failure.reason})")

    except (AccessDenied, GenerationFailed) as e:
        logger.error(f"❌ {e}")
    except Exception as e:
        logger.critical(f"🔥 Critical Failure: {e}", exc_info=True)


if __name__ == "__main__":
    try:
        os.makedirs(settings.output_root, exist_ok=True)
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Captured KeyboardInterrupt. Exiting...")
