"""Pygame host for the shape search experiment.

Draws the stimulus field, a home pad and a done button, turns mouse/touch
input into experiment input events and drives the session clock. All
timing, layout, scoring and state lives in the core modules; this file only
renders and translates input.
"""

from __future__ import annotations

import logging
import math
import os
import random
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pygame

from .clock import FrameClock, RealClock
from .config import config_from_env
from .experiment import Control, ExperimentConfig, ExperimentSession, ExperimentState, build_experiment_session
from .persistence import record_experiment
from .results import experiment_result_from_session
from .search_core import DEFAULT_REGION, Rect, StimulusSpec, Vec2
from .touch import TouchTracker
from .trial import StimulusField, TapOutcome, TrialSession

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"
WINDOW_SIZE = (960, 540)
TARGET_FPS = 60
RESULTS_DB_ENV = "SHAPE_SEARCH_DB_PATH"

BACKGROUND = (10, 10, 14)
TEXT_COLOUR = (235, 235, 245)
HINT_COLOUR = (180, 180, 190)
STIMULUS_COLOUR = (235, 235, 245)
MASK_COLOUR = (90, 90, 100)
FEEDBACK_COLOURS = {
    TapOutcome.PENDING: (128, 128, 128),
    TapOutcome.CORRECT: (60, 200, 90),
    TapOutcome.INCORRECT: (220, 60, 60),
}
HOME_COLOUR = (50, 90, 160)
DONE_COLOUR = (160, 110, 40)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def update(self, dt: float) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def update(self, dt: float) -> None:
        if self._screens:
            self._screens[-1].update(dt)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


@dataclass(slots=True)
class _Sprite:
    visible: bool = False
    masked: bool = False
    colour: tuple[int, int, int] = STIMULUS_COLOUR


class PygameRenderer:
    """Display-side state of every stimulus, fed through the Renderer calls."""

    def __init__(self) -> None:
        self._sprites: dict[int, _Sprite] = {}

    def _sprite(self, stimulus_id: int) -> _Sprite:
        sprite = self._sprites.get(stimulus_id)
        if sprite is None:
            sprite = _Sprite()
            self._sprites[stimulus_id] = sprite
        return sprite

    def show(self, stimulus_id: int) -> None:
        self._sprite(stimulus_id).visible = True

    def hide(self, stimulus_id: int) -> None:
        self._sprite(stimulus_id).visible = False

    def mask(self, stimulus_id: int) -> None:
        self._sprite(stimulus_id).masked = True

    def unmask(self, stimulus_id: int) -> None:
        self._sprite(stimulus_id).masked = False

    def set_feedback_color(self, stimulus_id: int, outcome: TapOutcome) -> None:
        self._sprite(stimulus_id).colour = FEEDBACK_COLOURS[outcome]

    def bind(self, field: StimulusField) -> None:
        # Stimulus ids restart with every trial; rebuild from the new field.
        self._sprites.clear()
        for spec in (field.cue, *field.stimuli):
            outcome = field.feedback_for(spec.stimulus_id)
            self._sprites[spec.stimulus_id] = _Sprite(
                visible=field.is_visible(spec.stimulus_id),
                masked=field.is_masked(spec.stimulus_id),
                colour=STIMULUS_COLOUR if outcome is None else FEEDBACK_COLOURS[outcome],
            )

    def is_visible(self, stimulus_id: int) -> bool:
        sprite = self._sprites.get(stimulus_id)
        return sprite is not None and sprite.visible

    def draw(self, surface: pygame.Surface, *, view: WorldView, specs: tuple[StimulusSpec, ...], size: float) -> None:
        radius_px = max(4, int(round(size * view.scale)))
        for spec in specs:
            sprite = self._sprites.get(spec.stimulus_id)
            if sprite is None or not sprite.visible:
                continue
            centre = view.to_screen(spec.position)
            if sprite.masked:
                pygame.draw.circle(surface, MASK_COLOUR, centre, radius_px)
            else:
                pygame.draw.polygon(surface, sprite.colour, _arrow_points(centre, radius_px, spec.rotation))


def _arrow_points(centre: tuple[int, int], radius_px: int, rotation: float) -> list[tuple[int, int]]:
    # Chevron pointing "up" at 0 degrees, rotated counter-clockwise.
    local = ((0.0, 1.0), (-0.7, -1.0), (0.0, -0.45), (0.7, -1.0))
    theta = math.radians(rotation)
    c, s = math.cos(theta), math.sin(theta)
    cx, cy = centre
    points = []
    for x, y in local:
        rx = (x * c - y * s) * radius_px
        ry = (x * s + y * c) * radius_px
        points.append((int(round(cx + rx)), int(round(cy - ry))))
    return points


class WorldView:
    """Maps world coordinates (y up) into the upper part of the window."""

    def __init__(self, *, region: Rect, size: tuple[int, int], margin: float = 1.0, field_ratio: float = 0.8) -> None:
        w, h = size
        self._left = region.x - margin
        self._top = region.y + region.height + margin
        span_w = region.width + 2.0 * margin
        span_h = region.height + 2.0 * margin
        self.scale = min(w / span_w, (h * field_ratio) / span_h)
        self._ox = (w - span_w * self.scale) / 2.0
        self._oy = 0.0

    def to_screen(self, point: Vec2) -> tuple[int, int]:
        sx = self._ox + (point.x - self._left) * self.scale
        sy = self._oy + (self._top - point.y) * self.scale
        return int(round(sx)), int(round(sy))

    def to_world(self, pos: tuple[int, int]) -> Vec2:
        x = (pos[0] - self._ox) / self.scale + self._left
        y = self._top - (pos[1] - self._oy) / self.scale
        return Vec2(x, y)


class ExperimentScreen:
    def __init__(
        self,
        app: App,
        *,
        session: ExperimentSession,
        renderer: PygameRenderer,
        on_finished: Callable[[ExperimentSession], None] | None = None,
    ) -> None:
        self._app = app
        self._session = session
        self._renderer = renderer
        self._on_finished = on_finished

        self._small_font = pygame.font.Font(None, 24)

        self._tracker = TouchTracker(click_time_s=session.config.touch_click_time)
        self._pointer_down = False
        self._pointer_pos = (0, 0)
        self._on_home = False
        self._bound_trial: TrialSession | None = None
        self._finished = False

        self._session.start()

    def _home_rect(self, size: tuple[int, int]) -> pygame.Rect:
        w, h = size
        return pygame.Rect(w // 2 - 70, h - 90, 140, 70)

    def _done_rect(self, size: tuple[int, int]) -> pygame.Rect:
        w, h = size
        return pygame.Rect(w - 170, h - 90, 150, 70)

    def _view(self, size: tuple[int, int]) -> WorldView:
        trial = self._session.active_trial
        region = DEFAULT_REGION if trial is None else trial.config.region
        return WorldView(region=region, size=size)

    def _controls_active(self) -> tuple[bool, bool]:
        state = self._session.state
        home = state is not ExperimentState.THANK_YOU
        done = state in (ExperimentState.IN_TRIAL, ExperimentState.THANK_YOU)
        return home, done

    def _hit_test(self, pos: tuple[int, int]) -> Control | int | None:
        size = pygame.display.get_surface().get_size()
        home_active, done_active = self._controls_active()
        if home_active and self._home_rect(size).collidepoint(pos):
            return Control.HOME
        if done_active and self._done_rect(size).collidepoint(pos):
            return Control.DONE

        trial = self._session.active_trial
        if trial is None:
            return None
        world = self._view(size).to_world(pos)
        best: tuple[float, int] | None = None
        for spec in trial.field.stimuli:
            if not self._renderer.is_visible(spec.stimulus_id):
                continue
            d = world.distance_to(spec.position)
            if d <= trial.config.stimulus_size and (best is None or d < best[0]):
                best = (d, spec.stimulus_id)
        return None if best is None else best[1]

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
            self._app.quit()
            return
        if event.type == pygame.MOUSEMOTION:
            self._pointer_pos = event.pos
        elif event.type == pygame.MOUSEBUTTONDOWN and getattr(event, "button", 0) == 1:
            self._pointer_down = True
            self._pointer_pos = event.pos
            hit = self._hit_test(event.pos)
            if isinstance(hit, int):
                size = pygame.display.get_surface().get_size()
                self._session.tap(hit, self._view(size).to_world(event.pos))
        elif event.type == pygame.MOUSEBUTTONUP and getattr(event, "button", 0) == 1:
            self._pointer_down = False
            self._pointer_pos = event.pos

    def update(self, dt: float) -> None:
        hit = self._hit_test(self._pointer_pos) if self._pointer_down else None
        pressed = self._tracker.update(hit=hit, pressed=self._pointer_down, dt=dt)
        if isinstance(pressed, Control):
            self._session.long_press(pressed)

        on_home = self._pointer_down and hit is Control.HOME
        if on_home != self._on_home:
            self._on_home = on_home
            if on_home:
                self._session.return_home()
            else:
                self._session.leave_home()

        self._session.advance(dt)

        trial = self._session.active_trial
        if trial is not self._bound_trial:
            self._bound_trial = trial
            if trial is not None:
                self._renderer.bind(trial.field)

        if self._session.exit_requested and not self._finished:
            self._finished = True
            if self._on_finished is not None:
                self._on_finished(self._session)
            self._app.quit()

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BACKGROUND)
        size = surface.get_size()
        trial = self._session.active_trial
        if trial is not None:
            specs = (trial.field.cue, *trial.field.stimuli)
            self._renderer.draw(surface, view=self._view(size), specs=specs, size=trial.config.stimulus_size)

        home_active, done_active = self._controls_active()
        if home_active:
            pygame.draw.rect(surface, HOME_COLOUR, self._home_rect(size), border_radius=12)
            label = self._small_font.render("HOME", True, TEXT_COLOUR)
            surface.blit(label, label.get_rect(center=self._home_rect(size).center))
        if done_active:
            pygame.draw.rect(surface, DONE_COLOUR, self._done_rect(size), border_radius=12)
            label = self._small_font.render("DONE", True, TEXT_COLOUR)
            surface.blit(label, label.get_rect(center=self._done_rect(size).center))

        score = self._small_font.render(f"Score: {self._session.score:.1f}", True, HINT_COLOUR)
        surface.blit(score, (20, 16))
        progress = f"Trial {self._session.trial_count}/{self._session.trials}"
        surface.blit(self._small_font.render(progress, True, HINT_COLOUR), (20, 40))

        lines = self._session.overlay_text.splitlines()
        if self._session.state is ExperimentState.PRE_TRIAL and self._session.feedback:
            lines = [*self._session.feedback.splitlines()[:2], "", *lines]
        y = 80
        for line in lines:
            text = self._app.font.render(line, True, TEXT_COLOUR)
            surface.blit(text, text.get_rect(midtop=(size[0] // 2, y)))
            y += 40


def results_db_path() -> Path | None:
    explicit = os.environ.get(RESULTS_DB_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return None


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def _store_results(session: ExperimentSession) -> None:
    db_path = results_db_path()
    if db_path is None:
        return
    run_id = record_experiment(
        db_path=db_path,
        result=experiment_result_from_session(session),
        events=session.event_log.records(),
        app_version=APP_VERSION,
    )
    logger.info("stored run %d in %s", run_id, db_path)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    config: ExperimentConfig | None = None,
    seed: int | None = None,
) -> int:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s - %(name)s]: %(message)s")
    pygame.init()

    pygame.display.set_caption("Shape Search")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)

    real_clock = RealClock()
    renderer = PygameRenderer()
    session = build_experiment_session(
        clock=real_clock,
        seed=_new_seed() if seed is None else seed,
        config=config or config_from_env(),
        renderer=renderer,
    )
    app.push(ExperimentScreen(app, session=session, renderer=renderer, on_finished=_store_results))

    frames = FrameClock(real_clock, max_step_s=0.25)
    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.update(frames.tick())
            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        pygame.quit()

    return 0
