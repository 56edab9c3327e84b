from fastapi import APIRouter, Depends

from rx_intake.api.deps import get_pipeline_config
from rx_intake.config import PipelineConfig

router = APIRouter()


@router.get(
    "",
    status_code=200,
    summary="Health check",
    description="Health check endpoint for the prescription intake service"
)
def health_check(config: PipelineConfig = Depends(get_pipeline_config)):
    return {"status": "ok", "mock_mode": config.use_mock_data}
