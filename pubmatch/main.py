from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich import print
from rich.logging import RichHandler
from rich.table import Table

from .config import Settings, load_settings
from .dispatch import DispatchReport, batch_messages, dispatch, write_failure_log
from .exceptions import AmbiguousSearch, PubMatchError, UnknownParticipant, WristbandCollision
from .ingest import read_roster, read_special_requests
from .ledger import get_batch, latest_unsent
from .matcher import BatchProposal, commit_batch, propose_batch
from .models import FRIEND_KINDS, Lane, MatchBatch, MatchKind, Participant, SystemState
from .report import export_csv, render_markdown, request_status, status_summary
from .sms import TwilioGateway
from .store import load_state, merge_roster, merge_special_requests, reset, resolve_participant, save_state
from .wristbands import check_in, check_in_everyone, check_out, edit_wristband, undo_last


app = typer.Typer(help="Pub night check-in and matching CLI")


@app.callback()
def main(
	ctx: typer.Context,
	env_file: Optional[Path] = typer.Option(None, help="Read settings from this .env file"),
	verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
	logging.basicConfig(
		level=logging.DEBUG if verbose else logging.INFO,
		format="%(message)s",
		handlers=[RichHandler(show_path=False)],
		force=True,
	)
	ctx.obj = load_settings(env_file)


@contextmanager
def _handled() -> Iterator[None]:
	try:
		yield
	except PubMatchError as exc:
		print(f"[red]✗ {exc}[/red]")
		raise typer.Exit(code=1)


def _typed(expected: str, prompt: str) -> bool:
	answer = typer.prompt(prompt, default="", show_default=False)
	if answer.strip() != expected:
		print("[yellow]Cancelled. Nothing was changed.[/yellow]")
		return False
	return True


def _resolve(state: SystemState, query: str, checked_in_only: bool = False) -> Participant:
	try:
		return resolve_participant(state, query, checked_in_only=checked_in_only)
	except AmbiguousSearch as exc:
		table = Table("#", "Name", "Email", "Wristband", "Checked in")
		for i, key in enumerate(exc.candidates, start=1):
			p = state.participants[key]
			table.add_row(str(i), p.name, p.email or "", str(p.wristband_number or "-"), "yes" if p.checked_in else "no")
		print(table)
		choice = typer.prompt("Select number", type=int)
		if not 1 <= choice <= len(exc.candidates):
			raise UnknownParticipant(f"Invalid choice {choice}") from None
		return state.participants[exc.candidates[choice - 1]]


def _payment_line(settings: Settings, p: Participant) -> str:
	if p.payment_required:
		return f"[bold yellow]OWES ${settings.entry_fee}[/bold yellow]"
	return "[green]FREE ENTRY[/green]"


def _records_table(records, title: Optional[str] = None) -> Table:
	table = Table("Type", "Who", "Wristbands", "Score", title=title)
	for record in records:
		score = "-" if record.kind == MatchKind.SPECIAL or record.kind == MatchKind.FRIEND_GROUP else str(record.score)
		kind = record.kind.value
		if record.reason is not None:
			kind += f" ({record.reason.value})"
		table.add_row(
			kind,
			" & ".join(m.name for m in record.members),
			" & ".join(f"#{m.wristband}" for m in record.members),
			score,
		)
	return table


def _batch_overview(batch: MatchBatch, settings: Settings) -> None:
	messages = batch_messages(batch, settings.event_name)
	print(f"[bold]Batch #{batch.number}[/bold]: {len(batch.records)} matches, {len(messages)} messages")
	print(f"  Generated at: {batch.created_at.isoformat(timespec='seconds')}")
	counts = {kind: sum(1 for r in batch.records if r.kind == kind) for kind in MatchKind}
	for kind, n in counts.items():
		if n:
			print(f"    {kind.value}: {n}")
	if messages:
		print(f"  Example to {messages[0].to}: \"{messages[0].body}\"")


def _report_sends(report: DispatchReport, settings: Settings, label: str = "Batch") -> None:
	print(f"[green]✓ Sent {report.sent} messages[/green]")
	if report.failures:
		print(f"[red]✗ {len(report.failures)} failed, see {settings.failed_sends}[/red]")
		write_failure_log(report, settings.failed_sends, label=label)


@app.command()
def load(ctx: typer.Context):
	"""Merge the survey exports and special requests into the saved state."""
	settings: Settings = ctx.obj
	paths: List[Path] = [settings.roster_csv]
	if settings.walkin_csv is not None and settings.walkin_csv.exists():
		paths.append(settings.walkin_csv)
	with _handled():
		state = load_state(settings.state_file)
		roster = read_roster(*paths)
		summary = merge_roster(state, roster.entries, exempt=settings.free_entry)
		added_requests = 0
		if settings.special_requests.exists():
			added_requests = merge_special_requests(state, read_special_requests(settings.special_requests))
		save_state(state, settings.state_file)
	print(
		f"[green]✓ Roster loaded:[/green] {len(summary.added)} new, {len(summary.updated)} updated, "
		f"{len(summary.removed)} removed ({roster.duplicates} duplicates dropped)"
	)
	if added_requests:
		print(f"[green]✓ {added_requests} new special requests[/green]")
	if roster.rejected:
		table = Table("Name", "Problem", title="Rejected rows")
		for name, problem in roster.rejected:
			table.add_row(name, problem)
		print(table)


@app.command()
def checkin(
	ctx: typer.Context,
	query: str = typer.Argument(..., help="Name, email or phone"),
	walkin: bool = typer.Option(False, "--walkin", help="Issue from the walk-in wristband range"),
):
	"""Check someone in and hand out their wristband."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		p = _resolve(state, query)
		check_in(state, p.key, lane=Lane.WALKIN if walkin else Lane.STANDARD)
		save_state(state, settings.state_file)
	print(f"[green]✓ {p.name} checked in[/green]  [bold]WRISTBAND #{p.wristband_number}[/bold]  {_payment_line(settings, p)}")


@app.command()
def checkout(ctx: typer.Context, query: str = typer.Argument(..., help="Name, email or wristband")):
	"""Check someone out; they keep their wristband number."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		p = _resolve(state, query, checked_in_only=True)
		check_out(state, p.key)
		save_state(state, settings.state_file)
	print(f"[green]✓ {p.name} checked out[/green] (wristband #{p.wristband_number} kept)")


@app.command("checkin-all")
def checkin_all(ctx: typer.Context, yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation")):
	"""Check in everyone on the roster (testing and dry runs)."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		if not yes and not typer.confirm(f"Check in all {len(state.participants)} participants?"):
			raise typer.Exit()
		done = check_in_everyone(state)
		save_state(state, settings.state_file)
	print(f"[green]✓ Checked in {len(done)} participants[/green]")


@app.command()
def undo(ctx: typer.Context):
	"""Reverse the most recent check-in or check-out."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		op = undo_last(state)
		p = state.participants[op.key]
		save_state(state, settings.state_file)
	lane = f" ({op.lane.value} lane)" if op.lane is not None else ""
	print(f"[green]✓ Undid {op.kind.value.replace('_', '-')}{lane} for {p.name}[/green]")


@app.command()
def wristband(
	ctx: typer.Context,
	query: str = typer.Argument(..., help="Name, email or current wristband"),
	number: int = typer.Argument(..., help="New wristband number"),
	force: bool = typer.Option(False, "--force", help="Assign even if someone else holds the number"),
):
	"""Correct a participant's wristband number."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		p = _resolve(state, query)
		try:
			old = edit_wristband(state, p.key, number, force=force)
		except WristbandCollision as exc:
			print(f"[yellow]⚠ {exc}[/yellow]")
			if not typer.confirm("Assign it anyway?"):
				raise typer.Exit(code=1)
			old = edit_wristband(state, p.key, number, force=True)
		save_state(state, settings.state_file)
	print(f"[green]✓ {p.name}: #{old} -> #{number}[/green]")


@app.command()
def status(ctx: typer.Context):
	"""Counts, payments, match distribution and who is in the room."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
	s = status_summary(state, entry_fee=settings.entry_fee)
	print("[bold]=== CURRENT STATUS ===[/bold]")
	print(f"  Total participants: {s.total}")
	print(f"  Checked in: {s.checked_in}")
	for gender, n in s.genders.items():
		print(f"    {gender}: {n}")
	print(f"  Batches sent: {s.batches_sent}")
	print(f"  Total matches made: {s.total_matches}")
	print(f"  People never matched (checked in): {s.never_matched}")
	print("\n[bold]Match distribution[/bold]")
	for count, people in s.distribution.items():
		print(f"  {people} people with {count} matches")

	present = sorted((p for p in state.participants.values() if p.checked_in), key=lambda p: p.wristband_number or 0)
	if present:
		table = Table("Wristband", "Name", "Matches", "Payment", title="Checked in")
		for p in present:
			table.add_row(f"#{p.wristband_number}", p.name, str(len(p.match_history)), "OWES" if p.payment_required else "FREE")
		print(table)
		print(f"  Free entry: {s.free_count}")
		print(f"  Owe ${settings.entry_fee}: {s.owe_count}")
		print(f"  Total to collect: [bold]${s.amount_due}[/bold]")
	else:
		print("\nNo participants checked in yet")
	if s.unsent_batches:
		print(f"\n[yellow]⚠ {len(s.unsent_batches)} batch(es) generated but not sent yet: {s.unsent_batches}[/yellow]")


@app.command()
def requests(ctx: typer.Context):
	"""Show every special request and whether both people can be found."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
	if not state.special_requests:
		print("No special requests loaded")
		return
	table = Table("Requester", "Requested", "Together", "Status")
	for r in request_status(state):
		if r.fulfilled:
			label = "[green]matched[/green]"
		elif not (r.requester_found and r.requested_found):
			missing = "requester" if not r.requester_found else "requested person"
			label = f"[red]{missing} not in roster[/red]"
		elif r.both_present:
			label = "[cyan]both here[/cyan]"
		else:
			label = "waiting"
		table.add_row(r.requester, r.requested, f"{r.count}/2", label)
	print(table)


@app.command()
def generate(ctx: typer.Context, yes: bool = typer.Option(False, "--yes", "-y", help="Save without asking")):
	"""Build the next batch, show it, and save it once confirmed."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		proposal: BatchProposal = propose_batch(state)
		print(_records_table(proposal.records, title=f"Batch #{proposal.batch_number} (proposed)"))
		friends = sum(1 for r in proposal.records if r.kind in FRIEND_KINDS)
		print(
			f"{len(proposal.records)} matches ({len(proposal.records) - friends} romantic/special, {friends} friend) "
			f"from {proposal.considered} checked in; {len(proposal.unmatched)} unmatched"
		)
		if not yes and not typer.confirm("Save these matches?"):
			print("[yellow]Discarded. Nothing was saved.[/yellow]")
			return
		batch = commit_batch(state, proposal)
		save_state(state, settings.state_file)
	print(f"[green]✓ Saved batch #{batch.number}[/green]. Use 'send' to text everyone.")


@app.command()
def send(ctx: typer.Context):
	"""Text the most recent unsent batch to its participants."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		batch = latest_unsent(state)
		if batch is None:
			print("[red]✗ No unsent matches to send[/red]")
			raise typer.Exit(code=1)
		with TwilioGateway.from_settings(settings) as gateway:
			_batch_overview(batch, settings)
			print("[bold red]This sends REAL messages to REAL participants and cannot be undone.[/bold red]")
			if not _typed("SEND", "Step 1: Type 'SEND' to continue"):
				return
			if not _typed(str(len(batch.records)), f"Step 2: Type the number of matches ({len(batch.records)})"):
				return
			if not _typed(f"SEND BATCH {batch.number}", f"Type 'SEND BATCH {batch.number}' to proceed"):
				return
			report = dispatch(batch, gateway, event_name=settings.event_name, delay=settings.send_delay)
		save_state(state, settings.state_file)
	_report_sends(report, settings)


@app.command()
def resend(ctx: typer.Context, number: int = typer.Argument(..., help="Batch number to resend")):
	"""Send an already sent batch again (keeps its original send time)."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		batch = get_batch(state, number)
		if batch is None or not batch.dispatched:
			print(f"[red]✗ Batch #{number} has not been sent; use 'send'[/red]")
			raise typer.Exit(code=1)
		with TwilioGateway.from_settings(settings) as gateway:
			_batch_overview(batch, settings)
			print(f"  Originally sent at: {batch.dispatched_at.isoformat(timespec='seconds')}")
			if not _typed("RESEND ALL", "Type 'RESEND ALL' to confirm"):
				return
			report = dispatch(batch, gateway, event_name=settings.event_name, delay=settings.send_delay)
		save_state(state, settings.state_file)
	_report_sends(report, settings, label="RESEND Batch")


@app.command("test-send")
def test_send(ctx: typer.Context, number: Optional[int] = typer.Argument(None, help="Batch number (default: latest)")):
	"""Send a batch to the test phone only; the batch stays unsent."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		batch = get_batch(state, number) if number is not None else (state.batches[-1] if state.batches else None)
		if batch is None:
			print("[red]✗ No batch to test[/red]")
			raise typer.Exit(code=1)
		if not settings.test_phone:
			print("[red]✗ Set PUBMATCH_TEST_PHONE to use test-send[/red]")
			raise typer.Exit(code=1)
		with TwilioGateway.from_settings(settings) as gateway:
			_batch_overview(batch, settings)
			print(f"  ALL messages go to: {settings.test_phone}; batch will NOT be marked as sent")
			if not _typed("TEST REAL SEND", "Type 'TEST REAL SEND' to confirm"):
				return
			report = dispatch(
				batch,
				gateway,
				redirect_override=settings.test_phone,
				event_name=settings.event_name,
				delay=settings.send_delay,
			)
	_report_sends(report, settings, label="TEST Batch")


@app.command()
def export(ctx: typer.Context, out_path: Optional[Path] = typer.Option(None, help="Write CSV here")):
	"""Export every match record of every batch to CSV."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
	if not state.batches:
		print("[yellow]No matches to export yet[/yellow]")
		return
	out = out_path or settings.export_csv
	rows = export_csv(state, out)
	print(f"[green]✓ Exported {rows} matches to[/green] {out}")


@app.command()
def report(ctx: typer.Context, number: Optional[int] = typer.Argument(None, help="Batch number (default: latest)")):
	"""Write a Markdown review of one batch."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
	batch = get_batch(state, number) if number is not None else (state.batches[-1] if state.batches else None)
	if batch is None:
		print("[red]✗ No such batch[/red]")
		raise typer.Exit(code=1)
	out = settings.report_dir / f"batch_{batch.number}.md"
	render_markdown(batch, out, event_name=settings.event_name)
	print(f"[green]Wrote report to[/green] {out}")


@app.command("reset")
def reset_command(ctx: typer.Context):
	"""Clear check-ins, wristbands, matches and request progress."""
	settings: Settings = ctx.obj
	with _handled():
		state = load_state(settings.state_file)
		print("[bold red]This clears all check-ins, wristbands and matches.[/bold red]")
		if not _typed("RESET", "Type 'RESET' to confirm"):
			return
		reset(state)
		save_state(state, settings.state_file)
	print("[green]✓ System reset[/green]")


if __name__ == "__main__":
	app()
