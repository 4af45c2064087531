"""
Job type catalogue.

A job type names the output format, the quality tier and (implicitly) the
model family that serves it:

    image_fast / image_high / video_fast / video_high  -> WAN 2.1 1.3B
    sdxl_image_fast / sdxl_image_high                  -> Lustify SDXL
    image7b_*_enhanced / video7b_*_enhanced            -> WAN with Qwen 7B prompt enhancement
"""

from dataclasses import dataclass

from genqueue.core.errors import ValidationError

MODEL_WAN = "wan_2_1_1_3b"
MODEL_SDXL = "lustify_sdxl"
MODEL_QWEN_ENHANCED = "qwen_7b_enhanced"

JOB_TYPES = (
    "image_fast",
    "image_high",
    "video_fast",
    "video_high",
    "sdxl_image_fast",
    "sdxl_image_high",
    "image7b_fast_enhanced",
    "image7b_high_enhanced",
    "video7b_fast_enhanced",
    "video7b_high_enhanced",
)


@dataclass(frozen=True)
class JobType:
    name: str
    format: str
    quality: str
    model_variant: str

    @property
    def is_sdxl(self) -> bool:
        return self.model_variant == MODEL_SDXL


def parse_job_type(job_type: str) -> JobType:
    """Split a job type into format, quality and model variant."""
    if not job_type:
        raise ValidationError("jobType is required")
    if job_type not in JOB_TYPES:
        raise ValidationError(f"Unknown job type: {job_type}")

    if job_type.startswith("sdxl_"):
        model_variant = MODEL_SDXL
    elif "7b" in job_type:
        model_variant = MODEL_QWEN_ENHANCED
    else:
        model_variant = MODEL_WAN

    fmt = "video" if "video" in job_type else "image"
    quality = "high" if "_high" in job_type else "fast"
    return JobType(name=job_type, format=fmt, quality=quality, model_variant=model_variant)
