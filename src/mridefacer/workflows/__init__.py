"""mridefacer workflows."""

from .base import (  # noqa: F401
    DefacedImage,
    deface_one,
    run_batch,
)
from .deface import (  # noqa: F401
    DefaceResult,
    deface_image,
    init_deface_wf,
)
