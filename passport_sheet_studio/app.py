from __future__ import annotations

import argparse
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import tkinter as tk
from tkinter import filedialog, messagebox, ttk
from tkinter import font as tkfont
from urllib.parse import unquote, urlparse

from PIL import Image, ImageTk

try:
    from tkinterdnd2 import DND_FILES, TkinterDnD
    DND_AVAILABLE = True
except ImportError:  # pragma: no cover - depends on optional dependency
    DND_AVAILABLE = False
    DND_FILES = None
    TkinterDnD = None

from .compositor import BackgroundColor, ClothingOption, GeminiCompositor
from .config import StudioConfig
from .curves import CHANNELS, curve_polyline
from .editor import CurveEditor, CurveGestures
from .geometry import CroppingSession, slider_rotation, view_to_source_matrix, wrap_rotation
from .histogram import HistogramCache
from .pipeline import (
    PassportPipeline,
    PipelineBusyError,
    PipelineError,
    PipelineResult,
    create_preview_image,
    crop_source,
    load_image,
)
from .scheduler import PreviewScheduler, immediate
from .sheet import encode_sheet, sheet_filename

logger = logging.getLogger(__name__)

CURVE_SIZE = 256


def parse_drop_files(data: str) -> List[str]:
    if not data:
        return []
    tokens = re.findall(r"{[^}]+}|[^\s]+", data)
    paths = [normalize_drop_path(token.strip().strip("{}")) for token in tokens]
    return [p for p in paths if p]


def normalize_drop_path(value: str) -> str:
    if value.startswith("file://"):
        parsed = urlparse(value)
        value = unquote(parsed.path)
        if os.name == "nt" and value.startswith("/"):
            value = value[1:]
    return value


def compute_fit_scale(image_size: tuple[int, int], canvas_size: tuple[int, int]) -> float:
    img_w, img_h = image_size
    canvas_w, canvas_h = canvas_size
    if img_w <= 0 or img_h <= 0:
        return 1.0
    if canvas_w <= 0 or canvas_h <= 0:
        return 1.0
    scale = min(canvas_w / img_w, canvas_h / img_h, 1.0)
    return max(scale, 0.05)


def canvas_to_curve(x: float, y: float, size: int = CURVE_SIZE) -> tuple[float, float]:
    """Canvas pixel to curve coordinates (0..255, origin bottom-left)."""
    scale = 255.0 / max(size - 1, 1)
    cx = min(255.0, max(0.0, x * scale))
    cy = min(255.0, max(0.0, 255.0 - y * scale))
    return cx, cy


def curve_to_canvas(x: float, y: float, size: int = CURVE_SIZE) -> tuple[float, float]:
    scale = max(size - 1, 1) / 255.0
    return x * scale, (255.0 - y) * scale


class Tooltip:
    def __init__(self, widget: tk.Widget, text: str) -> None:
        self.widget = widget
        self.text = text
        self.tip: Optional[tk.Toplevel] = None
        widget.bind("<Enter>", self._show)
        widget.bind("<Leave>", self._hide)

    def _show(self, _: tk.Event) -> None:
        if self.tip or not self.text:
            return
        x = self.widget.winfo_rootx() + 16
        y = self.widget.winfo_rooty() + 18
        self.tip = tk.Toplevel(self.widget)
        self.tip.wm_overrideredirect(True)
        self.tip.wm_geometry(f"+{x}+{y}")
        label = ttk.Label(self.tip, text=self.text, style="Tooltip.TLabel", justify="left")
        label.pack(ipadx=6, ipady=4)

    def _hide(self, _: tk.Event) -> None:
        if self.tip:
            self.tip.destroy()
            self.tip = None


@dataclass
class UiTokens:
    pad_sm: int = 6
    pad_md: int = 12
    pad_lg: int = 18
    sidebar_width: int = 320
    grade_preview_max_dim: int = 640
    wheel_zoom_step: float = 1.1
    double_click_ms: int = 300


@dataclass
class UiColors:
    bg: str = "#F4F1EC"
    panel: str = "#FBF9F5"
    text: str = "#1E1914"
    muted: str = "#6F665F"
    accent: str = "#C06A33"
    accent_dark: str = "#A15426"
    canvas_bg: str = "#14110D"
    canvas_border: str = "#D1C9BF"
    highlight: str = "#F2E6D8"
    crop_box: str = "#7FB2FF"
    curve_bg: str = "#111111"
    curve_grid: str = "#2A2A2A"
    histogram: str = "#3A3A3A"


CHANNEL_COLORS = {"all": "#FFFFFF", "red": "#FF4D4D", "green": "#4DFF88", "blue": "#4D94FF"}


class PassportStudioApp(ttk.Frame):
    SUPPORTED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".tif", ".tiff"}

    def __init__(self, master: tk.Tk, path: Optional[str] = None, config: Optional[StudioConfig] = None) -> None:
        super().__init__(master)
        self.master = master
        self.studio_config = config or StudioConfig()
        self.tokens = UiTokens()
        self.colors = UiColors()

        self.source: Optional[Image.Image] = None
        self.preview: Optional[Image.Image] = None
        self.preview_scale = 1.0
        self.session: Optional[CroppingSession] = None
        self.cropped: Optional[Image.Image] = None
        self.cropped_preview: Optional[Image.Image] = None
        self.graded_preview: Optional[Image.Image] = None
        self.histogram: Optional[List[float]] = None
        self.result: Optional[PipelineResult] = None
        self.mode = "empty"
        self.source_path: Optional[str] = None
        self.dnd_enabled = False
        self._crop_serial = 0
        self._photo: Optional[ImageTk.PhotoImage] = None
        self._updating_controls = False

        self.histogram_cache = HistogramCache()
        self.editor = CurveEditor()
        self.editor.subscribe(self._on_curves_changed)
        self.gestures = CurveGestures(
            self.editor, self, double_click_ms=self.tokens.double_click_ms, on_commit=self._update_buttons
        )
        self.scheduler: PreviewScheduler = PreviewScheduler(
            self,
            immediate(self._grade_preview),
            self._show_graded,
            delay_ms=self.studio_config.preview.debounce_ms,
        )
        self.pipeline = PassportPipeline(
            compositor=self._build_compositor(),
            sheet_spec=self.studio_config.sheet,
            interpolation=self.studio_config.preview.interpolation,
        )

        self._build_ui()
        self._bind_keys()
        self._configure_drag_drop()

        if path:
            self.load_image(path)
        else:
            self._render_empty_state()

    def _build_compositor(self) -> Optional[GeminiCompositor]:
        if not self.studio_config.compositor.api_key:
            logger.info("No API key configured; AI background replacement disabled")
            return None
        return GeminiCompositor.from_config(self.studio_config.compositor)

    def _build_ui(self) -> None:
        self.master.title("Passport Sheet Studio")
        self.master.minsize(1024, 700)
        self.master.configure(background=self.colors.bg)

        style = ttk.Style(self.master)
        if "clam" in style.theme_names():
            style.theme_use("clam")
        self._setup_fonts()

        style.configure("Studio.TFrame", background=self.colors.bg)
        style.configure("Panel.TFrame", background=self.colors.panel)
        style.configure("Studio.TLabel", background=self.colors.bg, foreground=self.colors.text, font=self.fonts["body"])
        style.configure("Panel.TLabel", background=self.colors.panel, foreground=self.colors.text, font=self.fonts["body"])
        style.configure(
            "PanelMuted.TLabel",
            background=self.colors.panel,
            foreground=self.colors.muted,
            font=self.fonts["caption"],
        )
        style.configure("Muted.TLabel", background=self.colors.bg, foreground=self.colors.muted, font=self.fonts["caption"])
        style.configure(
            "Studio.TLabelframe",
            background=self.colors.panel,
            foreground=self.colors.text,
            font=self.fonts["section"],
        )
        style.configure(
            "Studio.TLabelframe.Label",
            background=self.colors.panel,
            foreground=self.colors.text,
            font=self.fonts["section"],
        )
        style.configure(
            "Primary.TButton",
            background=self.colors.accent,
            foreground="#FFFFFF",
            padding=(12, 6),
            font=self.fonts["button"],
        )
        style.map(
            "Primary.TButton",
            background=[("active", self.colors.accent_dark), ("disabled", self.colors.muted)],
            foreground=[("active", "#FFFFFF")],
        )
        style.configure(
            "Secondary.TButton",
            background=self.colors.panel,
            foreground=self.colors.text,
            padding=(10, 6),
            font=self.fonts["button"],
        )
        style.configure(
            "Tooltip.TLabel",
            background="#1C1916",
            foreground="#F7F2EB",
            font=self.fonts["caption"],
            relief="solid",
            borderwidth=1,
        )
        style.configure("Help.TLabel", background=self.colors.panel, foreground=self.colors.muted, font=self.fonts["caption"])

        self.pack(fill="both", expand=True)
        self.configure(style="Studio.TFrame")

        header = ttk.Frame(self, style="Studio.TFrame")
        header.pack(fill="x", padx=self.tokens.pad_lg, pady=(self.tokens.pad_lg, self.tokens.pad_md))
        title = ttk.Label(header, text="Passport Sheet Studio", style="Studio.TLabel")
        title.configure(font=self.fonts["title"])
        title.pack(side="left")

        button_bar = ttk.Frame(header, style="Studio.TFrame")
        button_bar.pack(side="right")
        ttk.Button(button_bar, text="Open Photo", command=self._open_image_dialog, style="Secondary.TButton").pack(
            side="left", padx=(0, self.tokens.pad_sm)
        )
        self.crop_button = ttk.Button(button_bar, text="Apply Crop", command=self._apply_crop, style="Secondary.TButton")
        self.crop_button.pack(side="left", padx=(0, self.tokens.pad_sm))
        self.generate_button = ttk.Button(
            button_bar, text="Generate Sheet", command=self._generate, style="Primary.TButton"
        )
        self.generate_button.pack(side="left", padx=(0, self.tokens.pad_sm))
        self.save_button = ttk.Button(button_bar, text="Save Sheet", command=self._save_sheet, style="Secondary.TButton")
        self.save_button.pack(side="left", padx=(0, self.tokens.pad_sm))
        ttk.Button(button_bar, text="Start Over", command=self._start_over, style="Secondary.TButton").pack(side="left")

        body = ttk.Frame(self, style="Studio.TFrame")
        body.pack(fill="both", expand=True, padx=self.tokens.pad_lg, pady=(0, self.tokens.pad_lg))

        crop = self.studio_config.crop
        self.canvas = tk.Canvas(
            body,
            width=int(crop.container_width),
            height=int(crop.container_height),
            background=self.colors.canvas_bg,
            highlightthickness=2,
            highlightbackground=self.colors.canvas_border,
            takefocus=1,
        )
        self.canvas.pack(side="left", fill="both", expand=True)
        self.canvas.bind("<Configure>", self._on_canvas_configure)

        sidebar = ttk.Frame(body, style="Panel.TFrame", width=self.tokens.sidebar_width)
        sidebar.pack(side="right", fill="y", padx=(self.tokens.pad_md, 0))
        sidebar.pack_propagate(False)
        self._build_framing_controls(sidebar)
        self._build_curve_controls(sidebar)
        self._build_output_controls(sidebar)

        status_frame = ttk.Frame(self, style="Studio.TFrame")
        status_frame.pack(fill="x", padx=self.tokens.pad_lg, pady=(0, self.tokens.pad_sm))
        self.status_var = tk.StringVar(value="Ready")
        ttk.Label(status_frame, textvariable=self.status_var, style="Muted.TLabel").pack(anchor="w")
        self._update_buttons()

    def _build_framing_controls(self, parent: ttk.Frame) -> None:
        frame = ttk.LabelFrame(parent, text="Framing", style="Studio.TLabelframe")
        frame.pack(fill="x", pady=(0, self.tokens.pad_md))
        crop = self.studio_config.crop

        self.zoom_var = tk.DoubleVar(value=1.0)
        self.zoom_label_var = tk.StringVar(value="100%")
        header = ttk.Frame(frame, style="Panel.TFrame")
        header.pack(fill="x")
        ttk.Label(header, text="Zoom", style="Panel.TLabel").pack(side="left")
        self._add_help_icon(header, "Scale the photo under the crop box. Mouse wheel also works.")
        ttk.Label(header, textvariable=self.zoom_label_var, style="PanelMuted.TLabel").pack(side="right")
        ttk.Scale(
            frame,
            from_=crop.zoom_min,
            to=crop.zoom_max,
            orient="horizontal",
            variable=self.zoom_var,
            command=self._on_zoom_slider,
        ).pack(fill="x", pady=(self.tokens.pad_sm, self.tokens.pad_sm))

        self.rotation_var = tk.DoubleVar(value=0.0)
        self.rotation_text_var = tk.StringVar(value="0")
        header = ttk.Frame(frame, style="Panel.TFrame")
        header.pack(fill="x")
        ttk.Label(header, text="Rotation", style="Panel.TLabel").pack(side="left")
        self._add_help_icon(header, "Fine rotation. Type a value and press Enter; invalid input resets to 0.")
        entry = ttk.Entry(header, textvariable=self.rotation_text_var, width=7)
        entry.pack(side="right")
        entry.bind("<Return>", self._on_rotation_entry)
        entry.bind("<FocusOut>", self._on_rotation_entry)
        ttk.Scale(
            frame,
            from_=-90.0,
            to=90.0,
            orient="horizontal",
            variable=self.rotation_var,
            command=self._on_rotation_slider,
        ).pack(fill="x", pady=(self.tokens.pad_sm, 0))

        steps = ttk.Frame(frame, style="Panel.TFrame")
        steps.pack(fill="x", pady=(self.tokens.pad_sm, self.tokens.pad_sm))
        for delta in (-180, -90, 90, 180):
            ttk.Button(
                steps,
                text=f"{delta:+d}°",
                width=6,
                command=lambda d=delta: self._rotate_by(d),
                style="Secondary.TButton",
            ).pack(side="left", padx=(0, 2))
        ttk.Button(steps, text="0°", width=4, command=self._reset_rotation, style="Secondary.TButton").pack(side="left")

    def _build_curve_controls(self, parent: ttk.Frame) -> None:
        frame = ttk.LabelFrame(parent, text="Tone Curve", style="Studio.TLabelframe")
        frame.pack(fill="x", pady=(0, self.tokens.pad_md))

        row = ttk.Frame(frame, style="Panel.TFrame")
        row.pack(fill="x")
        self.channel_var = tk.StringVar(value="all")
        combo = ttk.Combobox(row, textvariable=self.channel_var, values=list(CHANNELS), state="readonly", width=8)
        combo.pack(side="left")
        combo.bind("<<ComboboxSelected>>", lambda _: self._on_channel_change())
        self.redo_button = ttk.Button(row, text="Redo", width=6, command=self._redo, style="Secondary.TButton")
        self.redo_button.pack(side="right")
        self.undo_button = ttk.Button(row, text="Undo", width=6, command=self._undo, style="Secondary.TButton")
        self.undo_button.pack(side="right", padx=(0, self.tokens.pad_sm))

        self.curve_canvas = tk.Canvas(
            frame,
            width=CURVE_SIZE,
            height=CURVE_SIZE,
            background=self.colors.curve_bg,
            highlightthickness=0,
            cursor="crosshair",
        )
        self.curve_canvas.pack(pady=(self.tokens.pad_sm, 0))
        self.curve_canvas.bind("<ButtonPress-1>", self._on_curve_press)
        self.curve_canvas.bind("<B1-Motion>", self._on_curve_drag)
        self.curve_canvas.bind("<ButtonRelease-1>", self._on_curve_release)
        self.curve_canvas.bind("<Double-Button-1>", self._on_curve_double_click)
        self.curve_readout_var = tk.StringVar(value="Input --- Output ---")
        ttk.Label(frame, textvariable=self.curve_readout_var, style="PanelMuted.TLabel").pack(anchor="w")
        ttk.Label(frame, text="Click to add, drag to move, double-click to remove.", style="PanelMuted.TLabel").pack(
            anchor="w"
        )

    def _build_output_controls(self, parent: ttk.Frame) -> None:
        frame = ttk.LabelFrame(parent, text="Output", style="Studio.TLabelframe")
        frame.pack(fill="x")
        self.background_var = tk.StringVar(value=BackgroundColor.WHITE.value)
        self.clothing_var = tk.StringVar(value=ClothingOption.NONE.value)
        self._labeled_combo(
            frame,
            "Background",
            self.background_var,
            [c.value for c in BackgroundColor],
            help_text="Replaced by the AI compositor unless 'unchanged'.",
        )
        self._labeled_combo(
            frame,
            "Clothing",
            self.clothing_var,
            [c.value for c in ClothingOption],
            help_text="Formal wear added by the AI compositor.",
        )
        sheet = self.studio_config.sheet
        ttk.Label(
            frame,
            text=(
                f"{sheet.copies} photos {sheet.photo_width_mm:g}x{sheet.photo_height_mm:g} mm on "
                f"{sheet.sheet_width_in:g}x{sheet.sheet_height_in:g} in at {sheet.pixels_per_inch} px/in.\n"
                "Print at 100% scale."
            ),
            style="PanelMuted.TLabel",
            justify="left",
        ).pack(anchor="w", pady=(self.tokens.pad_sm, 0))

    def _setup_fonts(self) -> None:
        base_family = self._pick_font_family(
            ["Avenir Next", "Avenir", "Segoe UI", "Helvetica Neue", "Inter", "Noto Sans", "DejaVu Sans", "Arial"]
        )
        self.fonts = {
            "title": tkfont.Font(family=base_family, size=18, weight="bold"),
            "section": tkfont.Font(family=base_family, size=12, weight="bold"),
            "body": tkfont.Font(family=base_family, size=11),
            "caption": tkfont.Font(family=base_family, size=10),
            "button": tkfont.Font(family=base_family, size=11, weight="bold"),
        }
        self.master.option_add("*Font", self.fonts["body"])

    def _pick_font_family(self, preferred: List[str]) -> str:
        available = set(tkfont.families(self.master))
        for name in preferred:
            if name in available:
                return name
        return tkfont.nametofont("TkDefaultFont").actual("family")

    def _labeled_combo(
        self,
        parent: ttk.Frame,
        label: str,
        variable: tk.StringVar,
        values: List[str],
        help_text: Optional[str] = None,
    ) -> ttk.Combobox:
        frame = ttk.Frame(parent, style="Panel.TFrame")
        frame.pack(fill="x", pady=(0, self.tokens.pad_sm))
        header = ttk.Frame(frame, style="Panel.TFrame")
        header.pack(fill="x")
        ttk.Label(header, text=label, style="Panel.TLabel").pack(side="left")
        if help_text:
            self._add_help_icon(header, help_text)
        combo = ttk.Combobox(frame, textvariable=variable, values=values, state="readonly")
        combo.pack(fill="x", pady=(self.tokens.pad_sm, 0))
        return combo

    def _add_help_icon(self, parent: ttk.Frame, text: str) -> None:
        icon = ttk.Label(parent, text="?", style="Help.TLabel", cursor="question_arrow")
        icon.pack(side="left", padx=(6, 0))
        Tooltip(icon, text)

    def _bind_keys(self) -> None:
        self.master.bind_all("<Control-z>", lambda _: self._undo(), add=True)
        self.master.bind_all("<Control-y>", lambda _: self._redo(), add=True)
        self.master.bind_all("<Control-Z>", lambda _: self._redo(), add=True)
        self.canvas.bind("<ButtonPress-1>", self._start_pan)
        self.canvas.bind("<B1-Motion>", self._do_pan)
        self.canvas.bind("<ButtonRelease-1>", self._end_pan)
        self.canvas.bind("<MouseWheel>", self._on_mousewheel)
        self.canvas.bind("<Button-4>", self._on_mousewheel_linux)
        self.canvas.bind("<Button-5>", self._on_mousewheel_linux)

    def _configure_drag_drop(self) -> None:
        if not DND_AVAILABLE:
            self.dnd_enabled = False
            return
        self.dnd_enabled = True
        if hasattr(self.master, "drop_target_register"):
            try:
                self.master.drop_target_register(DND_FILES)
                self.master.dnd_bind("<<Drop>>", self._on_drop)
            except tk.TclError:
                self.dnd_enabled = False

    def _on_drop(self, event: tk.Event) -> str:
        paths = parse_drop_files(str(getattr(event, "data", "")))
        paths = [p for p in paths if os.path.isfile(p) and self._is_supported_image(p)]
        if not paths:
            messagebox.showerror("Unsupported file", "Drop a photo (png, jpg, jpeg, webp, bmp, tif).")
            return "break"
        self.load_image(paths[0])
        return "break"

    def _is_supported_image(self, path: str) -> bool:
        return Path(path).suffix.lower() in self.SUPPORTED_EXTENSIONS

    def _open_image_dialog(self) -> None:
        path = filedialog.askopenfilename(
            title="Open photo",
            filetypes=[("Image files", "*.png *.jpg *.jpeg *.webp *.bmp *.tif *.tiff"), ("All files", "*.*")],
        )
        if path:
            self.load_image(path)

    def load_image(self, path: str) -> None:
        try:
            image = load_image(path)
        except Exception as exc:
            messagebox.showerror("Load failed", str(exc))
            self._render_empty_state()
            return

        self._reset_state()
        self.source = image
        self.source_path = path
        self.preview = create_preview_image(image, self.studio_config.preview.max_dim)
        self.preview_scale = self.preview.width / float(image.width)
        self.session = CroppingSession(image.size, self.studio_config.crop, container=self._canvas_size())
        self.mode = "crop"
        self._sync_framing_controls()
        self._update_buttons()
        self._refresh_display()
        self._set_status(f"Loaded {os.path.basename(path)} ({image.width}x{image.height}). Drag to frame the face.")

    def _reset_state(self) -> None:
        self.scheduler.cancel()
        self.gestures.cancel()
        self._crop_serial += 1
        self.session = None
        self.cropped = None
        self.cropped_preview = None
        self.graded_preview = None
        self.histogram = None
        self.result = None
        self.histogram_cache.clear()
        self.editor.reset()
        self.channel_var.set("all")

    def _start_over(self) -> None:
        self._reset_state()
        self.source = None
        self.preview = None
        self.source_path = None
        self.mode = "empty"
        self._update_buttons()
        self._render_empty_state()

    def _canvas_size(self) -> tuple[float, float]:
        width = self.canvas.winfo_width()
        height = self.canvas.winfo_height()
        if width <= 1 or height <= 1:
            return (self.studio_config.crop.container_width, self.studio_config.crop.container_height)
        return (float(width), float(height))

    def _on_canvas_configure(self, _: tk.Event) -> None:
        if self.session is not None and self.session.is_open:
            self.session.set_container(self._canvas_size())
        self._refresh_display()

    def _start_pan(self, event: tk.Event) -> None:
        self.canvas.focus_set()
        if self.mode == "crop" and self.session is not None:
            self.session.begin_drag(event.x, event.y)

    def _do_pan(self, event: tk.Event) -> None:
        if self.mode == "crop" and self.session is not None:
            self.session.drag_to(event.x, event.y)
            self._render_crop_view()

    def _end_pan(self, _: tk.Event) -> None:
        if self.session is not None:
            self.session.end_drag()

    def _on_mousewheel(self, event: tk.Event) -> None:
        factor = self.tokens.wheel_zoom_step if event.delta > 0 else 1.0 / self.tokens.wheel_zoom_step
        self._zoom_by(factor)

    def _on_mousewheel_linux(self, event: tk.Event) -> None:
        if event.num == 4:
            self._zoom_by(self.tokens.wheel_zoom_step)
        elif event.num == 5:
            self._zoom_by(1.0 / self.tokens.wheel_zoom_step)

    def _zoom_by(self, factor: float) -> None:
        if self.mode != "crop" or self.session is None:
            return
        self.session.set_zoom(self.session.viewport.zoom * factor)
        self._sync_framing_controls()
        self._render_crop_view()

    def _on_zoom_slider(self, _: str | None = None) -> None:
        if self._updating_controls or self.mode != "crop" or self.session is None:
            return
        self.session.set_zoom(float(self.zoom_var.get()))
        self._sync_framing_controls()
        self._render_crop_view()

    def _on_rotation_slider(self, _: str | None = None) -> None:
        if self._updating_controls or self.mode != "crop" or self.session is None:
            return
        self.session.set_rotation(float(self.rotation_var.get()))
        self._sync_framing_controls()
        self._render_crop_view()

    def _on_rotation_entry(self, _: tk.Event) -> None:
        if self.mode != "crop" or self.session is None:
            return
        self.session.set_rotation_text(self.rotation_text_var.get())
        self._sync_framing_controls()
        self._render_crop_view()

    def _rotate_by(self, delta: float) -> None:
        if self.mode != "crop" or self.session is None:
            return
        self.session.rotate_by(delta)
        self._sync_framing_controls()
        self._render_crop_view()

    def _reset_rotation(self) -> None:
        if self.mode != "crop" or self.session is None:
            return
        self.session.set_rotation(0.0)
        self._sync_framing_controls()
        self._render_crop_view()

    def _sync_framing_controls(self) -> None:
        if self.session is None:
            return
        viewport = self.session.viewport
        self._updating_controls = True
        try:
            self.zoom_var.set(viewport.zoom)
            self.rotation_var.set(slider_rotation(viewport.rotation_deg))
        finally:
            self._updating_controls = False
        self.zoom_label_var.set(f"{int(round(viewport.zoom * 100))}%")
        self.rotation_text_var.set(f"{round(wrap_rotation(viewport.rotation_deg), 1):g}")

    def _apply_crop(self) -> None:
        if self.mode != "crop" or self.session is None or self.source is None:
            return
        region = self.session.commit()
        try:
            cropped = crop_source(self.source, region)
        except Exception as exc:
            messagebox.showerror("Crop failed", str(exc))
            self.session = CroppingSession(self.source.size, self.studio_config.crop, container=self._canvas_size())
            self._refresh_display()
            return

        self.cropped = cropped
        self.cropped_preview = create_preview_image(cropped, self.tokens.grade_preview_max_dim)
        self.graded_preview = self.cropped_preview
        self._crop_serial += 1
        self.mode = "grade"
        self._update_buttons()
        self._refresh_display()
        self.after_idle(self._compute_histogram, self._crop_serial)
        self.scheduler.request(self.editor.settings)
        self._set_status(f"Cropped {region.width}x{region.height} px from the original. Adjust the tone curve.")

    def _compute_histogram(self, serial: int) -> None:
        if serial != self._crop_serial or self.cropped_preview is None:
            return
        self.histogram = self.histogram_cache.get_or_compute(self.cropped_preview, key=serial)
        self._draw_curve()

    def _grade_preview(self, settings) -> Image.Image:
        if self.cropped_preview is None:
            raise PipelineError("No cropped photo to grade.")
        return self.pipeline.grade(self.cropped_preview, settings)

    def _show_graded(self, image: Image.Image) -> None:
        self.graded_preview = image
        if self.mode == "grade":
            self._render_fitted(image)

    def _on_curves_changed(self, settings) -> None:
        self._draw_curve()
        self._update_buttons()
        if self.mode == "grade":
            self.scheduler.request(settings)

    def _on_channel_change(self) -> None:
        self.editor.select_channel(self.channel_var.get())
        self._draw_curve()

    def _undo(self) -> None:
        if self.mode == "grade":
            self.editor.undo()

    def _redo(self) -> None:
        if self.mode == "grade":
            self.editor.redo()

    def _on_curve_press(self, event: tk.Event) -> None:
        if self.mode != "grade":
            return
        index = self.gestures.press(*canvas_to_curve(event.x, event.y))
        self._update_readout(index)

    def _on_curve_drag(self, event: tk.Event) -> None:
        if self.editor.dragging is None:
            return
        self.gestures.drag(*canvas_to_curve(event.x, event.y))
        self._update_readout(self.editor.dragging)

    def _on_curve_release(self, _: tk.Event) -> None:
        self.gestures.release()
        self._update_buttons()

    def _on_curve_double_click(self, event: tk.Event) -> None:
        if self.mode != "grade":
            return
        self.gestures.double_click(*canvas_to_curve(event.x, event.y))
        self._update_buttons()

    def _update_readout(self, index: Optional[int]) -> None:
        points = self.editor.points
        if index is None or index >= len(points):
            self.curve_readout_var.set("Input --- Output ---")
            return
        point = points[index]
        self.curve_readout_var.set(f"Input {point.x} Output {point.y}")

    def _draw_curve(self) -> None:
        canvas = self.curve_canvas
        canvas.delete("all")
        size = CURVE_SIZE
        if self.histogram:
            for i, value in enumerate(self.histogram):
                x = i * (size - 1) / 255.0
                canvas.create_line(x, size, x, size - value * size, fill=self.colors.histogram)
        for step in range(1, 4):
            pos = step * size / 4.0
            canvas.create_line(pos, 0, pos, size, fill=self.colors.curve_grid)
            canvas.create_line(0, pos, size, pos, fill=self.colors.curve_grid)
        canvas.create_line(0, size, size, 0, fill=self.colors.curve_grid, dash=(4, 4))

        channel = self.editor.active_channel
        color = CHANNEL_COLORS[channel]
        points = self.editor.points
        line = curve_polyline(points, (size - 1, size - 1), self.studio_config.preview.interpolation)
        canvas.create_line(*[coord for xy in line for coord in xy], fill=color, width=2)
        for point in points:
            px, py = curve_to_canvas(point.x, point.y)
            canvas.create_oval(px - 5, py - 5, px + 5, py + 5, fill=color, outline=self.colors.curve_bg, width=2)

    def _generate(self) -> None:
        if self.cropped is None or self.pipeline.busy:
            return
        self.scheduler.flush()
        self.generate_button.configure(state="disabled")
        self._set_status("Generating sheet...")
        self.update_idletasks()
        serial = self._crop_serial
        try:
            self.pipeline.generate_async(
                self.cropped,
                self.editor.settings,
                BackgroundColor(self.background_var.get()),
                ClothingOption(self.clothing_var.get()),
                self._schedule_seconds,
                lambda result, error: self._on_generated(serial, result, error),
            )
        except PipelineBusyError:
            return
        self._update_buttons()

    def _schedule_seconds(self, seconds: float, func) -> None:
        self.after(int(round(seconds * 1000)), func)

    def _on_generated(self, serial: int, result: Optional[PipelineResult], error: Optional[BaseException]) -> None:
        self._update_buttons()
        if serial != self._crop_serial:
            logger.info("Discarding sheet generated for a previous crop")
            return
        if error is not None:
            messagebox.showerror("Sheet generation failed", str(error))
            self._set_status(str(error))
            return

        self.result = result
        self.mode = "sheet"
        self._update_buttons()
        self._refresh_display()
        if result.warning:
            messagebox.showwarning("AI enhancement failed", result.warning)
            self._set_status(result.warning)
        else:
            self._set_status("Sheet ready. Save it and print at 100% scale.")

    def _save_sheet(self) -> None:
        if self.result is None:
            return
        initial_dir = os.path.dirname(self.source_path) if self.source_path else None
        path = filedialog.asksaveasfilename(
            title="Save print sheet",
            defaultextension=".png",
            initialdir=initial_dir,
            initialfile=sheet_filename(),
            filetypes=[("PNG", "*.png")],
        )
        if not path:
            return
        try:
            Path(path).write_bytes(encode_sheet(self.result.sheet, self.studio_config.sheet))
        except OSError as exc:
            messagebox.showerror("Save failed", str(exc))
            return
        self._set_status(f"Saved {os.path.basename(path)}")

    def _update_buttons(self) -> None:
        self.crop_button.configure(state="normal" if self.mode == "crop" else "disabled")
        can_generate = self.cropped is not None and self.mode in ("grade", "sheet") and not self.pipeline.busy
        self.generate_button.configure(state="normal" if can_generate else "disabled")
        self.save_button.configure(state="normal" if self.result is not None else "disabled")
        grading = self.mode == "grade"
        self.undo_button.configure(state="normal" if grading and self.editor.history.can_undo() else "disabled")
        self.redo_button.configure(state="normal" if grading and self.editor.history.can_redo() else "disabled")

    def _refresh_display(self) -> None:
        if self.mode == "crop":
            self._render_crop_view()
        elif self.mode == "grade" and self.graded_preview is not None:
            self._render_fitted(self.graded_preview)
            self._draw_curve()
        elif self.mode == "sheet" and self.result is not None:
            self._render_fitted(self.result.sheet)
        else:
            self._render_empty_state()

    def _render_crop_view(self) -> None:
        if self.session is None or self.preview is None:
            return
        width, height = self._canvas_size()
        size = (int(width), int(height))
        matrix = view_to_source_matrix(self.session.natural_size, self.session.viewport, (width, height), self.preview_scale)
        view = self.preview.transform(size, Image.AFFINE, matrix, resample=Image.BILINEAR, fillcolor=(20, 17, 13))
        self._photo = ImageTk.PhotoImage(view)
        canvas = self.canvas
        canvas.delete("all")
        canvas.create_image(0, 0, image=self._photo, anchor="nw")

        box = self.session.box
        left, top = box.origin((width, height))
        right = left + box.width
        bottom = top + box.height
        shade = {"fill": "black", "stipple": "gray50", "outline": ""}
        canvas.create_rectangle(0, 0, width, top, **shade)
        canvas.create_rectangle(0, bottom, width, height, **shade)
        canvas.create_rectangle(0, top, left, bottom, **shade)
        canvas.create_rectangle(right, top, width, bottom, **shade)
        canvas.create_rectangle(left, top, right, bottom, outline=self.colors.crop_box, width=2)
        for i in (1, 2):
            gx = left + box.width * i / 3.0
            gy = top + box.height * i / 3.0
            canvas.create_line(gx, top, gx, bottom, fill=self.colors.highlight, stipple="gray25")
            canvas.create_line(left, gy, right, gy, fill=self.colors.highlight, stipple="gray25")
        canvas.create_oval(
            left + box.width * 0.15,
            top + box.height * 0.15,
            right - box.width * 0.15,
            bottom - box.height * 0.25,
            outline=self.colors.highlight,
            dash=(3, 3),
        )

    def _render_fitted(self, image: Image.Image) -> None:
        width, height = self._canvas_size()
        scale = compute_fit_scale(image.size, (int(width), int(height)))
        new_size = (max(int(image.width * scale), 1), max(int(image.height * scale), 1))
        shown = image if new_size == image.size else image.resize(new_size, resample=Image.BILINEAR)
        self._photo = ImageTk.PhotoImage(shown)
        self.canvas.delete("all")
        self.canvas.create_image(width / 2.0, height / 2.0, image=self._photo, anchor="center")

    def _render_empty_state(self) -> None:
        self.canvas.delete("all")
        message = "Drop a photo here or click Open Photo"
        if not self.dnd_enabled:
            message += "\nDrag & drop disabled (install tkinterdnd2)"
        self.canvas.create_text(
            self.canvas.winfo_width() // 2,
            self.canvas.winfo_height() // 2,
            text=message,
            fill=self.colors.highlight,
            font=self.fonts["section"],
        )
        self._set_status("No photo loaded.")

    def _set_status(self, message: str) -> None:
        self.status_var.set(message)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Passport photo sheet studio.")
    parser.add_argument("path", nargs="?", help="Photo to open")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main() -> None:
    args = _parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    config = StudioConfig.from_env()
    root = TkinterDnD.Tk() if DND_AVAILABLE else tk.Tk()
    app = PassportStudioApp(root, path=args.path, config=config)
    app.mainloop()


if __name__ == "__main__":
    main()
