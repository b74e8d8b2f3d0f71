from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.db import get_session
from storeadmin.schemas import marketing as schemas
from storeadmin.services import customers as customers_service
from storeadmin.services import email_automation as automation_service
from storeadmin.services import email_campaigns as campaigns_service
from storeadmin.services.email_providers import EmailProvider, get_email_provider
from storeadmin.services.personalization import personalize

router = APIRouter(prefix="/api/email", tags=["email"])


def segment_response(segment: models.EmailSegment, count: int) -> schemas.EmailSegmentResponse:
    return schemas.EmailSegmentResponse(
        id=segment.id,
        name=segment.name,
        description=segment.description,
        criteria=segment.criteria,
        count=count,
        updated_at=segment.updated_at,
    )


# Templates

@router.post("/templates", response_model=schemas.TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    payload: schemas.TemplateCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.TemplateResponse:
    try:
        template = await campaigns_service.create_template(session, payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.TemplateResponse.model_validate(template)


@router.get("/templates", response_model=List[schemas.TemplateResponse])
async def list_templates(
    category: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
) -> List[schemas.TemplateResponse]:
    templates = await campaigns_service.list_templates(session, category=category)
    return [schemas.TemplateResponse.model_validate(template) for template in templates]


@router.get("/templates/{template_id}", response_model=schemas.TemplateResponse)
async def get_template(
    template_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.TemplateResponse:
    template = await campaigns_service.get_template(session, template_id)
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return schemas.TemplateResponse.model_validate(template)


@router.patch("/templates/{template_id}", response_model=schemas.TemplateResponse)
async def update_template(
    template_id: UUID,
    payload: schemas.TemplateUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.TemplateResponse:
    try:
        template = await campaigns_service.update_template(
            session, template_id, payload.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return schemas.TemplateResponse.model_validate(template)


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await campaigns_service.delete_template(session, template_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Segments

@router.post("/segments", response_model=schemas.EmailSegmentResponse, status_code=status.HTTP_201_CREATED)
async def create_segment(
    payload: schemas.EmailSegmentCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.EmailSegmentResponse:
    try:
        segment = await campaigns_service.create_segment(session, payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    members = await campaigns_service.segment_members(session, segment.criteria)
    return segment_response(segment, len(members))


@router.get("/segments", response_model=List[schemas.EmailSegmentResponse])
async def list_segments(session: AsyncSession = Depends(get_session)) -> List[schemas.EmailSegmentResponse]:
    return [segment_response(segment, count) for segment, count in await campaigns_service.list_segments(session)]


@router.patch("/segments/{segment_id}", response_model=schemas.EmailSegmentResponse)
async def update_segment(
    segment_id: UUID,
    payload: schemas.EmailSegmentUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.EmailSegmentResponse:
    try:
        segment = await campaigns_service.update_segment(
            session, segment_id, payload.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if segment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment not found")
    members = await campaigns_service.segment_members(session, segment.criteria)
    return segment_response(segment, len(members))


@router.delete("/segments/{segment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_segment(
    segment_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await campaigns_service.delete_segment(session, segment_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Campaigns

@router.post("/campaigns", response_model=schemas.CampaignResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    payload: schemas.CampaignCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.CampaignResponse:
    try:
        campaign = await campaigns_service.create_campaign(session, payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.CampaignResponse.model_validate(campaign)


@router.get("/campaigns", response_model=List[schemas.CampaignResponse])
async def list_campaigns(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    campaign_type: Optional[str] = Query(default=None, alias="type"),
    session: AsyncSession = Depends(get_session),
) -> List[schemas.CampaignResponse]:
    campaigns = await campaigns_service.list_campaigns(session, status=status_filter, campaign_type=campaign_type)
    return [schemas.CampaignResponse.model_validate(campaign) for campaign in campaigns]


@router.get("/dashboard")
async def dashboard(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return await campaigns_service.dashboard_stats(session)


@router.get("/campaigns/{campaign_id}", response_model=schemas.CampaignResponse)
async def get_campaign(
    campaign_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.CampaignResponse:
    campaign = await campaigns_service.get_campaign(session, campaign_id)
    if campaign is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    return schemas.CampaignResponse.model_validate(campaign)


@router.patch("/campaigns/{campaign_id}", response_model=schemas.CampaignResponse)
async def update_campaign(
    campaign_id: UUID,
    payload: schemas.CampaignUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.CampaignResponse:
    try:
        campaign = await campaigns_service.update_campaign(
            session, campaign_id, payload.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if campaign is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    return schemas.CampaignResponse.model_validate(campaign)


@router.delete("/campaigns/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_campaign(
    campaign_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await campaigns_service.delete_campaign(session, campaign_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/campaigns/{campaign_id}/duplicate",
    response_model=schemas.CampaignResponse,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_campaign(
    campaign_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.CampaignResponse:
    campaign = await campaigns_service.duplicate_campaign(session, campaign_id)
    if campaign is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    return schemas.CampaignResponse.model_validate(campaign)


@router.post("/campaigns/{campaign_id}/send", response_model=schemas.CampaignResponse)
async def send_campaign(
    campaign_id: UUID,
    session: AsyncSession = Depends(get_session),
    provider: EmailProvider = Depends(get_email_provider),
) -> schemas.CampaignResponse:
    try:
        campaign = await campaigns_service.send_campaign(session, campaign_id, provider)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if campaign is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    return schemas.CampaignResponse.model_validate(campaign)


@router.post("/campaigns/{campaign_id}/stats", response_model=schemas.CampaignResponse)
async def record_stats(
    campaign_id: UUID,
    payload: schemas.CampaignStatsUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.CampaignResponse:
    campaign = await campaigns_service.record_stats(session, campaign_id, payload.model_dump())
    if campaign is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")
    return schemas.CampaignResponse.model_validate(campaign)


@router.post("/personalize")
async def preview_personalization(
    payload: schemas.PersonalizeRequest,
    session: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    customer: Any = payload.customer or {}
    if payload.customer_id:
        customer = await customers_service.get_customer(session, payload.customer_id)
        if customer is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    try:
        return {"rendered": personalize(payload.template, customer)}
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# Automations

@router.get("/automations", response_model=List[schemas.AutomationResponse])
async def list_automations(
    active: Optional[bool] = None,
    session: AsyncSession = Depends(get_session),
) -> List[schemas.AutomationResponse]:
    workflows = await automation_service.list_workflows(session, active=active)
    return [schemas.AutomationResponse.model_validate(workflow) for workflow in workflows]


@router.post("/automations", response_model=schemas.AutomationResponse, status_code=status.HTTP_201_CREATED)
async def create_automation(
    payload: schemas.AutomationCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.AutomationResponse:
    try:
        workflow = await automation_service.create_workflow(session, payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.AutomationResponse.model_validate(workflow)


@router.get("/automations/presets")
async def automation_presets() -> dict[str, Any]:
    return automation_service.AUTOMATION_PRESETS


@router.post("/automations/events")
async def trigger_automation_event(
    payload: schemas.AutomationEventIn,
    session: AsyncSession = Depends(get_session),
    provider: EmailProvider = Depends(get_email_provider),
) -> dict[str, Any]:
    try:
        runs = await automation_service.trigger_event(
            session, payload.event, customer_id=payload.customer_id, data=payload.data, provider=provider
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"started": len(runs), "runs": [schemas.AutomationRunResponse.model_validate(run) for run in runs]}


@router.post("/automations/process")
async def process_automations(
    session: AsyncSession = Depends(get_session),
    provider: EmailProvider = Depends(get_email_provider),
) -> dict[str, int]:
    return await automation_service.process_automations(session, provider)


@router.post("/automations/runs/{run_id}/engagement", response_model=schemas.AutomationRunResponse)
async def record_engagement(
    run_id: UUID,
    payload: schemas.EngagementIn,
    session: AsyncSession = Depends(get_session),
) -> schemas.AutomationRunResponse:
    try:
        run = await automation_service.record_engagement(
            session, run_id, payload.step_id, opened=payload.opened, clicked=payload.clicked
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation run not found")
    return schemas.AutomationRunResponse.model_validate(run)


@router.get("/automations/{workflow_id}", response_model=schemas.AutomationResponse)
async def get_automation(
    workflow_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.AutomationResponse:
    workflow = await automation_service.get_workflow(session, workflow_id)
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation not found")
    return schemas.AutomationResponse.model_validate(workflow)


@router.patch("/automations/{workflow_id}", response_model=schemas.AutomationResponse)
async def update_automation(
    workflow_id: UUID,
    payload: schemas.AutomationUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.AutomationResponse:
    try:
        workflow = await automation_service.update_workflow(
            session, workflow_id, payload.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation not found")
    return schemas.AutomationResponse.model_validate(workflow)


@router.delete("/automations/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_automation(
    workflow_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await automation_service.delete_workflow(session, workflow_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/automations/{workflow_id}/activate", response_model=schemas.AutomationResponse)
async def activate_automation(
    workflow_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.AutomationResponse:
    try:
        workflow = await automation_service.activate_workflow(session, workflow_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation not found")
    return schemas.AutomationResponse.model_validate(workflow)


@router.post("/automations/{workflow_id}/deactivate", response_model=schemas.AutomationResponse)
async def deactivate_automation(
    workflow_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.AutomationResponse:
    workflow = await automation_service.deactivate_workflow(session, workflow_id)
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation not found")
    return schemas.AutomationResponse.model_validate(workflow)


@router.get("/automations/{workflow_id}/runs", response_model=List[schemas.AutomationRunResponse])
async def list_automation_runs(
    workflow_id: UUID,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> List[schemas.AutomationRunResponse]:
    if await automation_service.get_workflow(session, workflow_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation not found")
    runs = await automation_service.list_runs(session, workflow_id, status=status_filter)
    return [schemas.AutomationRunResponse.model_validate(run) for run in runs]
