"""CLI commands for SpeakPrep.

This module provides all command-line interface commands using Typer.
"""

import sys
import time
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from rich.panel import Panel

from speakprep.core import (
    CaptureConstraints,
    CaptureController,
    MetadataStore,
    PyAudioSource,
    QuestionNavigator,
    RecordingSubmitter,
    SessionStatus,
    StorageManager,
    add_question,
    edit_vocabulary,
    import_questions,
    list_input_devices,
    search_questions,
)
from speakprep.core.config import AppConfig, DEFAULT_TIME_LIMIT, FILE_FORMAT, OUTPUT_DIR
from speakprep.core.errors import (
    DeviceUnavailable,
    MetadataWriteFailure,
    QuestionImportError,
    UploadFailure,
)
from speakprep.core.log import PracticeLogger
from speakprep.core.s3_upload import S3Uploader
from speakprep.core.submission import build_recording_name
from speakprep.cli.utils import (
    console,
    format_time,
    make_device_table,
    make_history_table,
    make_level_progress,
    make_question_panel,
    make_questions_table,
    suppress_stderr,
)

app = typer.Typer(help="IELTS speaking practice: answer prompts out loud and keep your recordings")

app_config = AppConfig()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _open_store() -> MetadataStore:
    return MetadataStore(app_config.get_database_url())


def _build_submitter(store: MetadataStore, file_format: str, practice_logger: PracticeLogger) -> Optional[RecordingSubmitter]:
    """Build the submitter from the ``s3`` config, or ``None`` when uploads are unavailable."""
    s3_config = app_config.get_s3_config()
    if not s3_config:
        console.print("[warning]S3 storage not configured, keeping the local copy only[/warning]")
        return None
    try:
        uploader = S3Uploader.from_dict(s3_config)
    except Exception as e:
        console.print(f"[warning]S3 upload disabled: {e}[/warning]")
        return None
    return RecordingSubmitter(uploader, store, file_format=file_format, practice_logger=practice_logger)


@app.command()
def list_devices(
    driver: Optional[str] = typer.Option(
        None, help="Filter by driver type: pulse, alsa, jack, usb, default"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """List all available input audio devices."""
    if verbose:
        devices = list_input_devices(driver_filter=driver)
    else:
        with suppress_stderr():
            devices = list_input_devices(driver_filter=driver)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(devices), title=f"[bold]{title}[/bold]"))


@app.command()
def practice(
    question: Optional[int] = typer.Option(
        None, "--question", "-q", help="Serial number of the question. Defaults to the first one."
    ),
    time_limit: Optional[int] = typer.Option(
        None, help="Stop automatically after this many seconds. Defaults to the question's limit."
    ),
    device_id: Optional[int] = typer.Option(
        None, help="Audio device ID to use. Defaults to the system input device."
    ),
    output: Optional[str] = typer.Option(None, help="Directory for local copies of recordings"),
    format: Optional[str] = typer.Option(
        None, help="Audio format: wav, flac, ogg or mp3"
    ),
    gain: Optional[float] = typer.Option(
        None, help="Input gain/amplification factor (1.0=no change, 2.0=+6dB, 0.5=-6dB)"
    ),
    upload: bool = typer.Option(
        True,
        "--upload/--no-upload",
        help="Upload the recording and save its metadata; --no-upload keeps the local copy only.",
    ),
    show_answer: bool = typer.Option(
        False, "--show-answer", help="Show the sample answer and key vocabulary before recording"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Answer a question out loud and save the recording."""
    _configure_logging(verbose)

    store = _open_store()
    navigator = QuestionNavigator(store.list_questions())
    if navigator.current is None:
        console.print("[error]✗ No questions found. Add some with import-questions.[/error]")
        raise typer.Exit(1)
    if question is not None and not navigator.jump_to(question):
        console.print(f"[error]✗ Question {question} not found[/error]")
        raise typer.Exit(1)
    current = navigator.current

    output_dir = output or str(app_config.get("output_dir", OUTPUT_DIR))
    file_format = (format or str(app_config.get("file_format", FILE_FORMAT))).lower()
    limit = time_limit or current.time_limit or int(app_config.get("default_time_limit", DEFAULT_TIME_LIMIT))
    flush_timeout = float(app_config.get("flush_timeout"))

    storage = StorageManager(output_dir)
    practice_logger = PracticeLogger(app_config.get_log_path(Path(output_dir)))
    submitter = _build_submitter(store, file_format, practice_logger) if upload else None

    constraints = CaptureConstraints(
        device_id=device_id,
        rate=int(app_config.get("rate")),
        channels=int(app_config.get("channel")),
        frames_per_buffer=int(app_config.get("chunk")),
        timeslice=int(app_config.get("timeslice")),
        gain=gain if gain is not None else float(app_config.get("gain")),
    )
    controller = CaptureController(
        PyAudioSource(),
        constraints=constraints,
        flush_timeout=flush_timeout,
        level_interval=float(app_config.get("level_interval")),
        practice_logger=practice_logger,
    )

    console.print(make_question_panel(current, show_answer=show_answer))
    console.print(f"[dim]{navigator.progress:.0f}% through {navigator.total} questions[/dim]")

    try:
        try:
            if verbose:
                controller.start(time_limit=limit, question_serial=current.serial_number)
            else:
                with suppress_stderr():
                    controller.start(time_limit=limit, question_serial=current.serial_number)
        except DeviceUnavailable as e:
            console.print(f"[error]✗ {e}. Please check microphone permissions.[/error]")
            raise typer.Exit(1)

        console.rule(f"[bold]Recording[/bold] until {format_time(limit)}, Ctrl+C to stop early")
        try:
            with make_level_progress() as progress:
                task = progress.add_task("level", total=100, clock=f"0:00 / {format_time(limit)}")
                while controller.status is SessionStatus.CAPTURING:
                    session = controller.session
                    progress.update(
                        task,
                        completed=session.amplitude * 100,
                        clock=f"{format_time(session.elapsed_seconds)} / {format_time(limit)}",
                    )
                    time.sleep(0.1)
        except KeyboardInterrupt:
            console.print("[warning]⏹ Recording stopped by user[/warning]")
            controller.stop()

        status = controller.wait(flush_timeout + 1.0)
        session = controller.session
        if status is not SessionStatus.READY:
            console.print("[error]✗ No audio captured. Please try again.[/error]")
            raise typer.Exit(1)

        name = build_recording_name(current.serial_number, file_format)
        local_path = storage.save_artifact(session.artifact, name, file_format)
        console.print(
            f"[success]✓ Recorded {format_time(session.elapsed_seconds)} "
            f"({session.artifact.duration_sec:.1f}s of audio)[/success]"
        )
        console.print(f"[dim]📁 Local copy: {local_path}[/dim]")

        if submitter is not None:
            try:
                with console.status("Uploading recording..."):
                    record = submitter.submit(controller, current)
            except (UploadFailure, MetadataWriteFailure) as e:
                console.print(f"[error]✗ Failed to save recording: {e}[/error]")
                console.print("[warning]The local copy was kept; please try again.[/warning]")
                raise typer.Exit(1)
            console.print(f"[success]✓ Recording saved[/success] [dim]{record.audio_url}[/dim]")
    finally:
        controller.reset()


@app.command()
def questions(
    part: Optional[int] = typer.Option(None, help="Only show questions from this IELTS part (1-3)"),
):
    """List the question bank."""
    rows = _open_store().list_questions()
    if part is not None:
        rows = [q for q in rows if q.part == part]
    if not rows:
        console.print("[warning]No questions found[/warning]")
        return
    console.print(Panel(make_questions_table(rows), title=f"[bold]Questions ({len(rows)})[/bold]"))


@app.command()
def search(term: str = typer.Argument(..., help="Text, category, serial number or part to look for")):
    """Find questions by text, category, serial number or part."""
    matches = search_questions(_open_store().list_questions(), term)
    if not matches:
        console.print(f'[warning]No questions found matching "{term}"[/warning]')
        return
    console.print(make_questions_table(matches))


@app.command()
def show(
    serial_number: int = typer.Argument(..., help="Serial number of the question"),
    answer: bool = typer.Option(False, "--answer", help="Include the sample answer and key vocabulary"),
):
    """Show one question."""
    current = _open_store().get_question(serial_number)
    if current is None:
        console.print(f"[error]✗ Question {serial_number} not found[/error]")
        raise typer.Exit(1)
    console.print(make_question_panel(current, show_answer=answer))


@app.command("import-questions")
def import_questions_command(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help='JSON file: {"part": "1", "q_a": [{"q": ..., "a": ...}]}'),
):
    """Bulk-import questions from a JSON file."""
    try:
        inserted = import_questions(_open_store(), path.read_text(encoding="utf-8"))
    except QuestionImportError as e:
        console.print(f"[error]✗ {e}[/error]")
        raise typer.Exit(1)

    console.print(f"[success]✓ Successfully inserted {len(inserted)} questions![/success]")
    for q in inserted:
        console.print(f"  #{q.serial_number}: {q.question[:80]}")


@app.command("add-question")
def add_question_command(
    part: int = typer.Option(..., "--part", "-p", help="IELTS part (1-3)"),
    question: str = typer.Option(..., "--question", help="Question text"),
    answer: str = typer.Option(..., "--answer", help="Sample answer"),
):
    """Add a single question after the last one."""
    try:
        added = add_question(_open_store(), part, question, answer)
    except QuestionImportError as e:
        console.print(f"[error]✗ {e}[/error]")
        raise typer.Exit(1)

    console.print(f"[success]✓ Question #{added.serial_number} added[/success] [dim]{added.category}, {format_time(added.time_limit)}[/dim]")


@app.command()
def edit(
    serial_number: int = typer.Argument(..., help="Serial number of the question"),
    answer: Optional[str] = typer.Option(None, "--answer", help="New sample answer"),
    add_word: Optional[List[str]] = typer.Option(None, "--add-word", help="Key vocabulary to add (repeatable)"),
    remove_word: Optional[List[str]] = typer.Option(None, "--remove-word", help="Key vocabulary to remove (repeatable)"),
):
    """Edit the sample answer and key vocabulary of a question."""
    if answer is None and not add_word and not remove_word:
        console.print("[warning]Nothing to change: pass --answer, --add-word or --remove-word[/warning]")
        raise typer.Exit(1)

    store = _open_store()
    current = store.get_question(serial_number)
    if current is None:
        console.print(f"[error]✗ Question {serial_number} not found[/error]")
        raise typer.Exit(1)

    vocabulary = None
    if add_word or remove_word:
        vocabulary = edit_vocabulary(current.key_vocabulary, add_word or [], remove_word or [])
    updated = store.update_question(serial_number, sample_answer=answer, key_vocabulary=vocabulary)

    console.print(f"[success]✓ Question {serial_number} updated[/success]")
    console.print(make_question_panel(updated, show_answer=True))


@app.command("delete")
def delete_question_command(
    serial_number: int = typer.Argument(..., help="Serial number of the question"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete a question and its recordings."""
    store = _open_store()
    if store.get_question(serial_number) is None:
        console.print(f"[error]✗ Question {serial_number} not found[/error]")
        raise typer.Exit(1)

    if not yes:
        typer.confirm(f"Delete question #{serial_number} and its recordings?", abort=True)

    store.delete_question(serial_number)
    console.print(f"[success]✓ Question #{serial_number} deleted successfully![/success]")


@app.command()
def history(
    serial_number: int = typer.Argument(..., help="Serial number of the question"),
    limit: int = typer.Option(5, help="Number of recordings to show"),
):
    """Show the latest uploaded recordings for a question."""
    store = _open_store()
    current = store.get_question(serial_number)
    if current is None:
        console.print(f"[error]✗ Question {serial_number} not found[/error]")
        raise typer.Exit(1)

    recordings = store.recent_recordings(current.id, limit=limit)
    if not recordings:
        console.print(f"[dim]No recordings yet for question {serial_number}[/dim]")
        return
    console.print(Panel(make_history_table(recordings), title=f"[bold]Question {serial_number} recordings[/bold]"))


@app.command()
def recordings(
    output: Optional[str] = typer.Option(None, help="Directory holding local copies"),
    delete: Optional[str] = typer.Option(None, help="Delete this local recording file"),
):
    """List or delete local copies of recordings."""
    storage = StorageManager(output or str(app_config.get("output_dir", OUTPUT_DIR)))

    if delete:
        if not storage.delete_recording(delete):
            console.print(f"[error]✗ Recording not found: {delete}[/error]")
            raise typer.Exit(1)
        console.print(f"[success]✓ Deleted {delete}[/success]")
        return

    files = storage.list_recordings()
    if not files:
        console.print("[dim]No local recordings[/dim]")
        return
    for item in files:
        console.print(f"{item['name']}  [dim]{item['size'] / 1024:.1f} KiB  {item['path']}[/dim]")


@app.command()
def status(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Show devices, database and optional S3 storage information.

    If an S3 configuration is present in ``.speakprep.yml`` the command
    will attempt a lightweight health check on the configured bucket and
    report whether it is reachable.
    """
    _configure_logging(verbose)

    console.rule("[bold]📋 SpeakPrep Status[/bold]")
    console.print()
    try:
        if verbose:
            devices = list_input_devices()
        else:
            with suppress_stderr():
                devices = list_input_devices()
        console.print(Panel(make_device_table(devices), title="[bold]Available Input Devices[/bold]"))
    except Exception as e:
        console.print(f"[error]✗ Error listing devices: {e}[/error]")

    try:
        count = len(_open_store().list_questions())
        console.print(f"[info]Database {app_config.get_database_url()}: {count} questions[/info]")
    except Exception as e:
        console.print(f"[error]✗ Database unavailable: {e}[/error]")

    s3_conf = app_config.get_s3_config()
    if not s3_conf:
        console.print("[dim]S3 storage not configured[/dim]")
    else:
        try:
            uploader = S3Uploader.from_dict(s3_conf)
            if uploader.check_bucket():
                console.print(f"[info]S3 storage available: bucket {uploader.bucket}[/info]")
            else:
                console.print(f"[warning]S3 storage not reachable (bucket: {uploader.bucket})[/warning]")
        except Exception as e:  # include config errors
            console.print(f"[error]Failed to initialize S3 client: {e}[/error]")
