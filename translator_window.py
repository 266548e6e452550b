from __future__ import annotations

import html
import math
from pathlib import Path
from typing import Callable, Optional

from PyQt6.QtCore import QTimer, Qt, pyqtSignal
from PyQt6.QtGui import QPixmap
from PyQt6.QtWidgets import (
    QComboBox,
    QFileDialog,
    QFrame,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from config_utils import read_int_env
from errors import Notification
from speech_capture import CaptureStatus
from translation_types import SUPPORTED_LANGUAGES


class TranslatorWindow(QWidget):
    THUMBNAIL_SIZE = 96
    COUNTDOWN_REFRESH_MS = 100

    translate_requested = pyqtSignal()
    record_toggled = pyqtSignal(bool)
    retry_requested = pyqtSignal()
    image_selected = pyqtSignal(str)
    image_removed = pyqtSignal()
    speak_requested = pyqtSignal()
    copy_requested = pyqtSignal()
    input_edited = pyqtSignal()

    def __init__(self) -> None:
        super().__init__()
        self._recording = False
        self._loading = False
        self._countdown_source: Optional[Callable[[], Optional[float]]] = None
        self._notification_ms = read_int_env("NOTIFICATION_TIMEOUT_MS", 4000)

        self._notification_timer = QTimer(self)
        self._notification_timer.setSingleShot(True)
        self._notification_timer.timeout.connect(self._hide_notification)
        self._countdown_timer = QTimer(self)
        self._countdown_timer.setInterval(self.COUNTDOWN_REFRESH_MS)
        self._countdown_timer.timeout.connect(self._refresh_countdown)

        self._build_ui()
        self.setWindowTitle("Multimodal Translator")
        self.setMinimumSize(720, 480)

    def input_text(self) -> str:
        return self.input_view.toPlainText()

    def set_input_text(self, text: str) -> None:
        self.input_view.blockSignals(True)
        self.input_view.setPlainText(text)
        self.input_view.blockSignals(False)

    def target_language(self) -> str:
        return self.language_combo.currentData() or ""

    def translation_text(self) -> str:
        return self.output_view.toPlainText()

    def set_translation(self, text: str) -> None:
        self.output_view.setPlainText(text)
        self.speak_button.setEnabled(bool(text.strip()))
        self.copy_button.setEnabled(bool(text.strip()))

    def set_loading(self, loading: bool) -> None:
        self._loading = loading
        self.translate_button.setEnabled(not loading)
        self.translate_button.setText("Translating..." if loading else "Translate")
        self.image_button.setEnabled(not loading)
        self.record_button.setEnabled(not loading or self._recording)

    def set_busy_speaking(self, speaking: bool) -> None:
        self.speak_button.setEnabled(not speaking and bool(self.translation_text().strip()))

    def set_capture_status(self, status: CaptureStatus) -> None:
        self._recording = status in (CaptureStatus.LISTENING, CaptureStatus.PROCESSING)
        self.record_button.setText("Stop Recording" if self._recording else "Start Recording")
        self.retry_button.setVisible(status is CaptureStatus.ERROR)
        labels = {
            CaptureStatus.REQUESTING_PERMISSION: "Requesting microphone access...",
            CaptureStatus.LISTENING: "Listening...",
            CaptureStatus.PROCESSING: "Processing speech...",
            CaptureStatus.COMPLETE: "Recording complete.",
            CaptureStatus.ERROR: "Voice input failed.",
            CaptureStatus.IDLE: "Idle",
        }
        self.set_status(labels[status])
        if status is CaptureStatus.LISTENING:
            self._countdown_timer.start()
        else:
            self._countdown_timer.stop()
            self.countdown_label.clear()

    def set_countdown_source(self, source: Optional[Callable[[], Optional[float]]]) -> None:
        self._countdown_source = source

    def set_live_transcript(self, text: str) -> None:
        self.transcript_label.setText(text)

    def set_preview(self, path: Optional[Path]) -> None:
        if path is None:
            self.thumbnail_label.clear()
            self.thumbnail_label.hide()
            self.remove_image_button.hide()
            return
        pixmap = QPixmap(str(path))
        if not pixmap.isNull():
            pixmap = pixmap.scaled(
                self.THUMBNAIL_SIZE,
                self.THUMBNAIL_SIZE,
                Qt.AspectRatioMode.KeepAspectRatio,
                Qt.TransformationMode.SmoothTransformation,
            )
        self.thumbnail_label.setPixmap(pixmap)
        self.thumbnail_label.show()
        self.remove_image_button.show()

    def set_status(self, message: str) -> None:
        self.status_label.setText(message)

    def show_notification(self, notification: Notification) -> None:
        color = "#c0392b" if notification.destructive else "#2c3e50"
        self.notification_label.setStyleSheet(
            f"background-color: {color}; color: white; border-radius: 6px; padding: 6px 10px;"
        )
        self.notification_label.setText(
            f"<b>{html.escape(notification.title)}</b><br>{html.escape(notification.description)}"
        )
        self.notification_label.show()
        self._notification_timer.start(self._notification_ms)

    def _hide_notification(self) -> None:
        self.notification_label.hide()

    def _refresh_countdown(self) -> None:
        remaining = self._countdown_source() if self._countdown_source else None
        if remaining is None:
            self.countdown_label.clear()
            return
        self.countdown_label.setText(f"Silence: {math.ceil(remaining)}s")

    def _build_ui(self) -> None:
        root = QVBoxLayout(self)
        root.setContentsMargins(12, 12, 12, 12)
        root.setSpacing(8)

        self.notification_label = QLabel("")
        self.notification_label.setTextFormat(Qt.TextFormat.RichText)
        self.notification_label.setWordWrap(True)
        self.notification_label.hide()
        root.addWidget(self.notification_label)

        columns = QHBoxLayout()
        root.addLayout(columns, 1)

        input_column = QVBoxLayout()
        columns.addLayout(input_column, 1)
        input_column.addWidget(QLabel("Input"))
        self.input_view = QTextEdit()
        self.input_view.setAcceptRichText(False)
        self.input_view.setPlaceholderText("Type, speak or upload an image...")
        self.input_view.textChanged.connect(self.input_edited.emit)
        input_column.addWidget(self.input_view, 1)

        capture_row = QHBoxLayout()
        input_column.addLayout(capture_row)
        self.record_button = QPushButton("Start Recording")
        self.record_button.clicked.connect(self._on_record_clicked)
        capture_row.addWidget(self.record_button)
        self.retry_button = QPushButton("Retry")
        self.retry_button.clicked.connect(self.retry_requested.emit)
        self.retry_button.hide()
        capture_row.addWidget(self.retry_button)
        self.image_button = QPushButton("Image...")
        self.image_button.clicked.connect(self._on_image_clicked)
        capture_row.addWidget(self.image_button)
        capture_row.addStretch(1)

        self.transcript_label = QLabel("")
        self.transcript_label.setWordWrap(True)
        input_column.addWidget(self.transcript_label)
        self.countdown_label = QLabel("")
        input_column.addWidget(self.countdown_label)

        preview_row = QHBoxLayout()
        input_column.addLayout(preview_row)
        self.thumbnail_label = QLabel()
        self.thumbnail_label.setFixedSize(self.THUMBNAIL_SIZE, self.THUMBNAIL_SIZE)
        self.thumbnail_label.setFrameShape(QFrame.Shape.StyledPanel)
        self.thumbnail_label.hide()
        preview_row.addWidget(self.thumbnail_label)
        self.remove_image_button = QPushButton("Remove")
        self.remove_image_button.clicked.connect(self.image_removed.emit)
        self.remove_image_button.hide()
        preview_row.addWidget(self.remove_image_button)
        preview_row.addStretch(1)

        output_column = QVBoxLayout()
        columns.addLayout(output_column, 1)
        output_column.addWidget(QLabel("Translate to"))
        self.language_combo = QComboBox()
        self.language_combo.addItem("Select target language", "")
        for _, name in SUPPORTED_LANGUAGES:
            self.language_combo.addItem(name, name)
        output_column.addWidget(self.language_combo)
        self.output_view = QTextEdit()
        self.output_view.setReadOnly(True)
        self.output_view.setPlaceholderText("Translation will appear here...")
        output_column.addWidget(self.output_view, 1)

        output_row = QHBoxLayout()
        output_column.addLayout(output_row)
        self.speak_button = QPushButton("Speak")
        self.speak_button.setEnabled(False)
        self.speak_button.clicked.connect(self.speak_requested.emit)
        output_row.addWidget(self.speak_button)
        self.copy_button = QPushButton("Copy")
        self.copy_button.setEnabled(False)
        self.copy_button.clicked.connect(self.copy_requested.emit)
        output_row.addWidget(self.copy_button)
        output_row.addStretch(1)

        self.translate_button = QPushButton("Translate")
        self.translate_button.clicked.connect(self.translate_requested.emit)
        root.addWidget(self.translate_button)

        self.status_label = QLabel("Idle")
        root.addWidget(self.status_label)

    def _on_record_clicked(self) -> None:
        self.record_toggled.emit(not self._recording)

    def _on_image_clicked(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self,
            "Upload Image",
            "",
            "Images (*.png *.jpg *.jpeg *.gif *.bmp *.webp);;All files (*)",
        )
        if path:
            self.image_selected.emit(path)
