from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import Settings, get_settings, open_database
from .errors import QuizError
from .events import EventStore
from .game import GameController
from .logging_config import configure_logging
from .models import LeaderboardEntry, Player, PlayerView, Quiz, SessionSnapshot
from .schemas import (
    AnswerIn,
    AnswerOut,
    CreateQuizIn,
    EventsOut,
    JoinIn,
    JoinOut,
    PlayerRefIn,
    QuizSummaryOut,
)
from .store import create_store


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logger = configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = open_database(settings)
        store = create_store(database)
        await store.open()
        app.state.controller = GameController(store, EventStore(database), settings)
        logger.info("quiz service ready (%s storage)", "mongo" if settings.MONGO_URL else "in-memory")
        try:
            yield
        finally:
            await app.state.controller.close()
            await store.close()

    app = FastAPI(title="LiveQuiz API", lifespan=lifespan)
    app.state.settings = settings

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_origin_regex=settings.CORS_ORIGIN_REGEX or None,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(QuizError)
    async def quiz_error_handler(request: Request, exc: QuizError):
        logger.debug("rejected %s %s: %s", request.method, request.url.path, exc.code)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})

    _register_routes(app)
    return app


def get_controller(request: Request) -> GameController:
    return request.app.state.controller


def require_admin(request: Request, x_admin_key: Optional[str] = Header(default=None)):
    if x_admin_key != request.app.state.settings.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


def _register_routes(app: FastAPI) -> None:
    @app.get("/api/admin/verify")
    async def verify(_: None = Depends(require_admin)):
        return {"ok": True}

    # --- quizzes ---

    @app.post("/api/quizzes", response_model=QuizSummaryOut, status_code=201)
    async def create_quiz(
        payload: CreateQuizIn,
        controller: GameController = Depends(get_controller),
        _: None = Depends(require_admin),
    ):
        quiz = await controller.create_quiz(payload.to_quiz())
        return QuizSummaryOut.from_quiz(quiz)

    @app.get("/api/quizzes", response_model=List[QuizSummaryOut])
    async def list_quizzes(controller: GameController = Depends(get_controller)):
        return [QuizSummaryOut.from_quiz(q) for q in await controller.list_quizzes()]

    @app.get("/api/quizzes/{quiz_id}", response_model=QuizSummaryOut)
    async def get_quiz(quiz_id: str, controller: GameController = Depends(get_controller)):
        return QuizSummaryOut.from_quiz(await controller.get_quiz(quiz_id))

    @app.get("/api/admin/quizzes/{quiz_id}", response_model=Quiz)
    async def export_quiz(
        quiz_id: str,
        controller: GameController = Depends(get_controller),
        _: None = Depends(require_admin),
    ):
        return await controller.get_quiz(quiz_id)

    @app.delete("/api/quizzes/{quiz_id}")
    async def delete_quiz(
        quiz_id: str,
        controller: GameController = Depends(get_controller),
        _: None = Depends(require_admin),
    ):
        await controller.delete_quiz(quiz_id)
        return {"ok": True}

    # --- players ---

    @app.post("/api/session/{quiz_id}/join", response_model=JoinOut, status_code=201)
    async def join(quiz_id: str, payload: JoinIn, controller: GameController = Depends(get_controller)):
        player = await controller.join(quiz_id, payload.name)
        return JoinOut(quiz_id=quiz_id, player=player)

    @app.post("/api/session/{quiz_id}/leave")
    async def leave(quiz_id: str, payload: PlayerRefIn, controller: GameController = Depends(get_controller)):
        await controller.leave(quiz_id, payload.player_id)
        return {"ok": True}

    @app.post("/api/session/{quiz_id}/answer", response_model=AnswerOut)
    async def answer(quiz_id: str, payload: AnswerIn, controller: GameController = Depends(get_controller)):
        recorded = await controller.submit_answer(
            quiz_id, payload.player_id, payload.option_index, payload.question_index
        )
        return AnswerOut(answer=recorded)

    @app.get("/api/session/{quiz_id}", response_model=SessionSnapshot)
    async def snapshot(quiz_id: str, controller: GameController = Depends(get_controller)):
        return await controller.snapshot(quiz_id)

    @app.get("/api/session/{quiz_id}/players/{player_id}", response_model=PlayerView)
    async def player_view(quiz_id: str, player_id: str, controller: GameController = Depends(get_controller)):
        return await controller.player_view(quiz_id, player_id)

    @app.get("/api/session/{quiz_id}/standings", response_model=List[LeaderboardEntry])
    async def standings(quiz_id: str, controller: GameController = Depends(get_controller)):
        return await controller.standings(quiz_id)

    @app.get("/api/session/{quiz_id}/events", response_model=EventsOut)
    async def list_events(
        quiz_id: str,
        after: int | None = None,
        limit: int | None = None,
        controller: GameController = Depends(get_controller),
    ):
        events = await controller.list_events(quiz_id, after=after, limit=limit)
        latest_seq = events[-1]["seq"] if events else await controller.latest_event_seq(quiz_id)
        return {"events": events, "latest_seq": latest_seq}

    # --- host ---

    @app.post("/api/admin/session/{quiz_id}/approve", response_model=Player)
    async def approve(
        quiz_id: str,
        payload: PlayerRefIn,
        controller: GameController = Depends(get_controller),
        _: None = Depends(require_admin),
    ):
        return await controller.approve(quiz_id, payload.player_id)

    @app.post("/api/admin/session/{quiz_id}/start", response_model=SessionSnapshot)
    async def start(quiz_id: str, controller: GameController = Depends(get_controller), _: None = Depends(require_admin)):
        return await controller.start(quiz_id)

    @app.post("/api/admin/session/{quiz_id}/advance", response_model=SessionSnapshot)
    async def advance(quiz_id: str, controller: GameController = Depends(get_controller), _: None = Depends(require_admin)):
        return await controller.advance(quiz_id)

    @app.post("/api/admin/session/{quiz_id}/pause", response_model=SessionSnapshot)
    async def pause(quiz_id: str, controller: GameController = Depends(get_controller), _: None = Depends(require_admin)):
        return await controller.pause(quiz_id)

    @app.post("/api/admin/session/{quiz_id}/resume", response_model=SessionSnapshot)
    async def resume(quiz_id: str, controller: GameController = Depends(get_controller), _: None = Depends(require_admin)):
        return await controller.resume(quiz_id)

    @app.post("/api/admin/session/{quiz_id}/reset", response_model=SessionSnapshot)
    async def reset(quiz_id: str, controller: GameController = Depends(get_controller), _: None = Depends(require_admin)):
        return await controller.reset(quiz_id)


app = create_app()
