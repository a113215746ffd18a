"""FastAPI backend - conversational multi-city trip planner"""
import logging
import uuid

# Load .env before anything else
from dotenv import load_dotenv
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional

from nomad import config
from nomad.agents.ConversationAgent import TripChatService
from nomad.agents.llm_client import build_llm_client
from nomad.agents.ModificationAgent import apply_modification
from nomad.database import build_session_store
from nomad.ical_export import itinerary_to_ical
from nomad.TripInfo import Itinerary, ParsedTrip

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_service() -> TripChatService:
    return TripChatService(store=build_session_store(), llm=build_llm_client())


app = FastAPI(
    title="Nomad Trip Planner API",
    description="Chat-driven multi-city itinerary planning",
    version="0.1.0",
)
app.state.service = build_service()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_service(request: Request) -> TripChatService:
    return request.app.state.service


# Pydantic models
class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    session_id: Optional[str] = None


class ModifyRequest(BaseModel):
    message: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    trip: Optional[Dict[str, Any]] = None
    itinerary: Optional[Dict[str, Any]] = None
    preferences: Dict[str, Any] = {}


@app.get("/health")
def health():
    return {"status": "ok", "model": config.llm_name()}


@app.post("/chat")
def chat(body: ChatRequest, service: TripChatService = Depends(get_service)):
    session_id = body.session_id or uuid.uuid4().hex
    response = service.classify_and_respond(body.message, session_id)
    return {"session_id": session_id, **response.to_dict()}


@app.post("/itinerary/modify")
def modify_itinerary(body: ModifyRequest, service: TripChatService = Depends(get_service)):
    """Apply one modification to a session's trip or to a trip/itinerary in the payload.

    Stateless: the session (if any) is not updated.
    """
    preferences = dict(body.preferences)
    if body.session_id:
        state = service.get_state(body.session_id)
        if state is None:
            raise HTTPException(status_code=404, detail="Session not found")
        if state.trip is None:
            raise HTTPException(status_code=409, detail="Session has no itinerary yet")
        current = state.trip
        preferences = {**state.context.preferences, **preferences}
    else:
        try:
            if body.itinerary is not None:
                current = Itinerary.from_dict(body.itinerary)
            elif body.trip is not None:
                current = ParsedTrip.from_dict(body.trip)
            else:
                raise HTTPException(status_code=422, detail="Provide session_id, trip or itinerary")
        except (ValueError, TypeError, KeyError) as exc:
            raise HTTPException(status_code=422, detail=f"Invalid trip: {exc}")

    result = apply_modification(body.message, current, preferences)
    return result.to_dict()


@app.get("/sessions/{session_id}")
def get_session(session_id: str, service: TripChatService = Depends(get_service)):
    state = service.get_state(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return state.to_dict()


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str, service: TripChatService = Depends(get_service)):
    if not service.reset(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"deleted": session_id}


@app.get("/sessions/{session_id}/ical")
def get_session_ical(session_id: str, service: TripChatService = Depends(get_service)):
    """Download an iCal (.ics) file for the session's current itinerary."""
    state = service.get_state(session_id)
    if state is None or state.itinerary is None:
        raise HTTPException(status_code=404, detail="No itinerary for this session")

    ics_bytes = itinerary_to_ical(state.itinerary, session_id)
    safe_title = state.itinerary.title.replace(" ", "_").replace(",", "")
    return Response(
        content=ics_bytes,
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="{safe_title}.ics"'},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
