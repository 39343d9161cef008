import asyncio
import logging
import os
import sys
from pathlib import Path

# Add current directory to path so we can import backend modules
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from typing import Any, Dict, Optional
from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError

from config import CONFIG
from economy import EconomySimulator, report_to_dict
from grid import TileGrid
from persistence import PersistenceError
from run_city import create_starter_city
from tiles import make_tile, placement_blacklist

load_dotenv()

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# SAVE and LOAD only touch files inside the directory of CITYSIM_SAVE_PATH
_save_path = Path(os.getenv("CITYSIM_SAVE_PATH", "city.map")).resolve()
SAVE_DIR = _save_path.parent
DEFAULT_SAVE_NAME = _save_path.name
DEFAULT_SEED = int(os.environ["CITYSIM_SEED"]) if os.getenv("CITYSIM_SEED") else None

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SetupRequest(BaseModel):
    width: int = Field(CONFIG.map.width, gt=0, le=500)
    height: int = Field(CONFIG.map.height, gt=0, le=500)
    seed: Optional[int] = None
    starter_town: bool = True


class TaxUpdate(BaseModel):
    residentialTax: Optional[float] = Field(None, ge=0.0, le=1.0)
    commercialTax: Optional[float] = Field(None, ge=0.0, le=1.0)
    industrialTax: Optional[float] = Field(None, ge=0.0, le=1.0)


class PlaceRequest(BaseModel):
    tile: str
    x0: int
    y0: int
    x1: int
    y1: int


class FileRequest(BaseModel):
    path: Optional[str] = None


class CommandError(Exception):
    """A websocket command that cannot be carried out."""


class CityManager:
    def __init__(self):
        self.simulator: Optional[EconomySimulator] = None
        self.is_running = False
        self.active_websocket: Optional[WebSocket] = None
        self.frame_delay = 0.1
        self.loop_task: Optional[asyncio.Task] = None

    def initialize(self, config: Dict[str, Any] = None):
        request = SetupRequest(**(config or {}))
        seed = request.seed if request.seed is not None else DEFAULT_SEED

        logger.info(f"Initializing {request.width}x{request.height} city (seed={seed})...")
        if request.starter_town:
            self.simulator = create_starter_city(request.width, request.height, seed)
        else:
            grid = TileGrid.new_generated(request.width, request.height, rng_seed=seed)
            self.simulator = EconomySimulator(grid, seed=seed)
            self.simulator.funds = CONFIG.economy.starting_funds
        logger.info("City initialized")

    def require_city(self) -> EconomySimulator:
        if self.simulator is None:
            raise CommandError("No city loaded; send SETUP first")
        return self.simulator

    def step(self) -> Dict[str, Any]:
        simulator = self.require_city()
        simulator.tick(simulator.tick_period)
        return self.build_state()

    def build_state(self) -> Dict[str, Any]:
        simulator = self.require_city()
        return {
            "type": "STATE",
            "day": simulator.day,
            "metrics": simulator.get_city_metrics(),
            "report": report_to_dict(simulator.last_report),
        }

    def update_config(self, config_data: Dict[str, Any]):
        simulator = self.require_city()
        update = TaxUpdate(**config_data)

        if update.residentialTax is not None:
            simulator.residential_tax = update.residentialTax
        if update.commercialTax is not None:
            simulator.commercial_tax = update.commercialTax
        if update.industrialTax is not None:
            simulator.industrial_tax = update.industrialTax

    def place(self, data: Dict[str, Any]) -> bool:
        simulator = self.require_city()
        request = PlaceRequest(**data)
        try:
            tile = make_tile(request.tile, simulator.config.catalogue)
        except KeyError:
            raise CommandError(f"Unknown tile '{request.tile}'") from None

        simulator.grid.select((request.x0, request.y0), (request.x1, request.y1), placement_blacklist(tile))
        return simulator.place(tile)

    def resolve_save_path(self, name: Optional[str] = None) -> Path:
        """Map a client-supplied file name into SAVE_DIR; anything outside it is refused."""
        save_dir = SAVE_DIR.resolve()
        path = (save_dir / (name or DEFAULT_SAVE_NAME)).resolve()
        if save_dir not in path.parents:
            raise CommandError(f"Save files must stay inside the save directory: '{name}'")
        return path

    def save(self, name: Optional[str] = None) -> str:
        path = self.resolve_save_path(name)
        self.require_city().save(path)
        return str(path.relative_to(SAVE_DIR.resolve()))

    def load(self, name: Optional[str] = None) -> str:
        path = self.resolve_save_path(name)
        simulator = self.simulator
        if simulator is None:
            simulator = EconomySimulator(TileGrid.filled(1, 1, make_tile("grass")), seed=DEFAULT_SEED)
        simulator.load(path)
        self.simulator = simulator
        return str(path.relative_to(SAVE_DIR.resolve()))

    def start(self):
        """Start the loop task unless one is running; a stopped task still sleeping is cancelled."""
        if self.is_running:
            return
        self.cancel_loop()
        self.is_running = True
        self.loop_task = asyncio.create_task(self.run_loop())

    def stop(self):
        self.is_running = False
        self.cancel_loop()

    def cancel_loop(self):
        if self.loop_task is not None and not self.loop_task.done():
            self.loop_task.cancel()
        self.loop_task = None

    async def run_loop(self):
        if not self.simulator:
            logger.warning("Attempted to run loop without a city. Waiting for SETUP.")
            return

        logger.info("Starting simulation loop")
        try:
            while self.is_running and self.active_websocket:
                start_time = asyncio.get_event_loop().time()

                state = self.step()
                await self.active_websocket.send_json(state)

                # Throttle
                elapsed = asyncio.get_event_loop().time() - start_time
                await asyncio.sleep(max(0.01, self.frame_delay - elapsed))

        except Exception as e:
            logger.exception(f"Simulation loop error: {e}")
            self.is_running = False
            if self.active_websocket:
                await self.active_websocket.send_json({"type": "ERROR", "detail": str(e)})


manager = CityManager()


async def handle_command(websocket: WebSocket, data: Dict[str, Any]):
    command = data.get("command")

    if command == "SETUP":
        manager.stop()
        manager.initialize(data.get("config", {}))
        await websocket.send_json({"type": "SETUP_COMPLETE", "state": manager.build_state()})
    elif command == "START":
        if not manager.simulator:
            # Auto-initialize if not done yet
            manager.initialize()

        manager.start()
    elif command == "STOP":
        manager.stop()
    elif command == "RESET":
        # Stop and drop the city; a new SETUP starts over
        manager.stop()
        manager.simulator = None
        await websocket.send_json({"type": "RESET", "day": 0})
    elif command == "STEP":
        await websocket.send_json(manager.step())
    elif command == "CONFIG":
        manager.update_config(data.get("config", {}))
        await websocket.send_json({"type": "CONFIG_UPDATED", "state": manager.build_state()})
    elif command == "PLACE":
        placed = manager.place(data.get("placement", {}))
        await websocket.send_json({"type": "PLACED", "placed": placed, "state": manager.build_state()})
    elif command == "SAVE":
        path = manager.save(FileRequest(**data).path)
        await websocket.send_json({"type": "SAVED", "path": path})
    elif command == "LOAD":
        path = manager.load(FileRequest(**data).path)
        await websocket.send_json({"type": "LOADED", "path": path, "state": manager.build_state()})
    else:
        raise CommandError(f"Unknown command '{command}'")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    manager.active_websocket = websocket
    logger.info("WebSocket connected")

    try:
        while True:
            data = await websocket.receive_json()
            try:
                await handle_command(websocket, data)
            except (CommandError, ValidationError, PersistenceError) as e:
                logger.warning(f"Command {data.get('command')!r} failed: {e}")
                await websocket.send_json({"type": "ERROR", "detail": str(e)})

    except WebSocketDisconnect:
        manager.stop()
        manager.active_websocket = None
        logger.info("Client disconnected")
