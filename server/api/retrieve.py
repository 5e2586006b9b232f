"""
Retrieve API - Run the retrieval pipeline without generating an answer.
"""

from fastapi import APIRouter, Depends

from ..models.schemas import RetrieveRequest, RetrieveResponse
from ..services.chat_service import ChatService, get_chat_service

router = APIRouter(prefix="/api", tags=["retrieve"])


@router.post("/retrieve", response_model=RetrieveResponse)
async def retrieve_chunks(request: RetrieveRequest, service: ChatService = Depends(get_chat_service)) -> RetrieveResponse:
    """
    Classify a query and return the chunks that would be sent to the model.

    Useful for inspecting strategy selection and fallbacks.
    """
    classification, results = await service.retrieve(request.pdf_id, request.query)
    return RetrieveResponse(
        query=request.query,
        classification=classification.to_dict(),
        results=[r.to_dict() for r in results],
    )
