"""OTAI terminal chat: sign in, talk to the assistant, send referrals."""

import logging
import os
import sys
import threading

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.status import Status
from rich.table import Table

from otai_assistant.chat import ChatController
from otai_assistant.errors import ValidationError
from otai_assistant.models import Message, ReferralForm, Urgency, User, UserType
from otai_assistant.referral_workflow import SubmissionStatus
from otai_assistant.storage import SqliteStore, UserRepository

load_dotenv(override=True)

LOG_LEVEL = os.environ.get("LOG_LEVEL") or "WARNING"

console = Console()

HELP_TEXT = """**Kommandon**

- `/new` - starta en ny konversation (den nuvarande arkiveras)
- `/history` - visa arkiverade konversationer
- `/resume <nr>` - fortsätt en arkiverad konversation
- `/delete <nr>` - ta bort en arkiverad konversation
- `/referral` - skapa en remiss till en legitimerad arbetsterapeut
- `/quit` - avsluta"""


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def print_message(message: Message) -> None:
    if message.is_assistant:
        console.print("[bold cyan]OTAI:[/bold cyan]", Markdown(message.content), "\n")
    elif message.is_system:
        console.print(f"[bold yellow]System:[/bold yellow] {message.content}\n")
    else:
        console.print(f"[bold green]{message.role.user.name}:[/bold green] {message.content}")


def sign_in(users: UserRepository) -> User | None:
    """Sign in by email, registering a new user if the email is unknown."""
    current = users.get_current_user()
    if current:
        console.print(f"Inloggad som [bold]{current.name}[/bold] ({current.email})\n")
        return current

    while True:
        try:
            email = console.input("[bold]E-post:[/bold] ").strip()
        except (EOFError, KeyboardInterrupt):
            return None
        if not email:
            continue

        try:
            return users.sign_in(email)
        except ValidationError:
            pass

        try:
            name = console.input("[bold]Ny användare. Namn:[/bold] ").strip()
            is_provider = console.input("Är du vårdgivare? (j/n) ").strip().lower().startswith("j")
        except (EOFError, KeyboardInterrupt):
            return None
        user_type = UserType.PROVIDER if is_provider else UserType.PATIENT
        try:
            return users.register_user(email, name, user_type)
        except ValidationError as e:
            console.print(f"[bold red]{e}[/bold red]")


def show_history(controller: ChatController) -> None:
    sessions = controller.archived_sessions()
    if not sessions:
        console.print("Inga arkiverade konversationer.\n")
        return

    table = Table(title="Arkiverade konversationer")
    table.add_column("Nr", justify="right")
    table.add_column("Titel")
    table.add_column("Senast aktiv")
    table.add_column("Meddelanden", justify="right")
    for i, session in enumerate(sessions, 1):
        table.add_row(
            str(i),
            session.title,
            session.last_activity_at.astimezone().strftime("%Y-%m-%d %H:%M"),
            str(len(session.messages)),
        )
    console.print(table)


def _pick_archived(controller: ChatController, arg: str) -> str | None:
    sessions = controller.archived_sessions()
    if not arg.isdigit() or not 1 <= int(arg) <= len(sessions):
        console.print("[bold red]Ogiltigt nummer.[/bold red] Använd /history för att se listan.\n")
        return None
    return sessions[int(arg) - 1].id


def _ask(prompt: str, required: bool = False) -> str:
    while True:
        value = console.input(f"{prompt}{' *' if required else ''}: ").strip()
        if value or not required:
            return value


def _ask_yes_no(prompt: str) -> bool:
    return console.input(f"{prompt} (j/n): ").strip().lower().startswith("j")


def fill_referral_form(referral: ReferralForm) -> ReferralForm:
    """Walk the user through the referral form steps."""
    console.print("\n[bold]Steg 1 av 5: Kontaktuppgifter[/bold]")
    referral.patient_info.name = _ask(f"Namn [{referral.patient_info.name}]") or referral.patient_info.name
    referral.patient_info.email = _ask(f"E-post [{referral.patient_info.email}]") or referral.patient_info.email
    referral.patient_info.phone = _ask("Telefonnummer", required=True)
    age = _ask("Ålder (valfritt)")
    referral.patient_info.age = int(age) if age.isdigit() else None
    referral.patient_info.address = _ask("Adress (valfritt, för hembesök)") or None

    console.print("\n[bold]Steg 2 av 5: Utmaningar[/bold]")
    referral.challenges.primary = _ask("Huvudsaklig utmaning", required=True)
    referral.challenges.duration = _ask("Hur länge har du haft denna utmaning? (valfritt)") or None
    referral.challenges.impact = _ask("Hur påverkar detta din vardag?", required=True)
    secondary = _ask("Andra utmaningar, kommaseparerade (valfritt)")
    referral.challenges.secondary = [s.strip() for s in secondary.split(",") if s.strip()]

    console.print("\n[bold]Steg 3 av 5: Behov[/bold]")
    referral.needs.physical_aids = _ask_yes_no("Behov av fysiska hjälpmedel?")
    if referral.needs.physical_aids:
        aids = _ask("Vilka hjälpmedel, kommaseparerade (valfritt)")
        referral.needs.physical_aids_list = [a.strip() for a in aids.split(",") if a.strip()]
    referral.needs.home_visit = _ask_yes_no("Behov av hembesök?")
    referral.needs.workplace_visit = _ask_yes_no("Behov av arbetsplatsbesök?")
    referral.needs.follow_up = _ask_yes_no("Behov av uppföljning?")
    referral.needs.other = _ask("Övriga behov (valfritt)") or None

    console.print("\n[bold]Steg 4 av 5: Brådskande[/bold]")
    urgency = _ask("Brådskande? låg/medel/hög [medel]").lower()
    referral.urgency = {"låg": Urgency.LOW, "hög": Urgency.HIGH}.get(urgency, Urgency.MEDIUM)
    referral.urgency_reason = _ask("Anledning (valfritt)") or None

    console.print("\n[bold]Steg 5 av 5: Samtycke[/bold]")
    referral.additional_notes = _ask("Ytterligare kommentarer (valfritt)") or None
    referral.consent_given = _ask_yes_no(
        "Jag godkänner att mina uppgifter och konversationen skickas till en legitimerad arbetsterapeut"
    )
    return referral


def handle_referral(controller: ChatController) -> None:
    retryable = controller.retryable_referrals()

    cancel = threading.Event()
    if retryable and _ask_yes_no(
        f"Remissen från {retryable[0].created_at.astimezone():%Y-%m-%d %H:%M} skickades inte. Försöka igen?"
    ):
        try:
            referral = controller.open_referral(retryable[0].id)
        except ValidationError as e:
            console.print(f"[bold red]{e}[/bold red]\n")
            return
    elif controller.suggest_referral:
        referral = controller.open_referral()
        try:
            fill_referral_form(referral)
        except (EOFError, KeyboardInterrupt):
            # Closing the form abandons the submission
            cancel.set()
    else:
        console.print("En remiss föreslås när assistenten bedömer att du behöver personlig kontakt.\n")
        return

    with Status("Skickar remiss...", console=console, spinner="dots"):
        outcome = controller.submit_referral(referral, cancel=cancel)

    if outcome.status == SubmissionStatus.INVALID:
        for error in outcome.errors:
            console.print(f"[bold red]{error}[/bold red]")
        controller.cancel_referral()
        console.print()
    elif outcome.status == SubmissionStatus.CANCELLED:
        console.print("Remissen avbröts.\n")
    else:
        print_message(outcome.message)


def handle_command(controller: ChatController, command: str) -> bool:
    """Run a slash command. Returns False when the user wants to quit."""
    name, _, arg = command.partition(" ")
    arg = arg.strip()

    if name in ("/quit", "/exit"):
        return False
    if name == "/new":
        controller.new_conversation()
        console.print("Ny konversation startad.\n")
    elif name == "/history":
        show_history(controller)
    elif name == "/resume":
        session_id = _pick_archived(controller, arg)
        if session_id and controller.resume_archived(session_id):
            for message in controller.messages:
                print_message(message)
    elif name == "/delete":
        session_id = _pick_archived(controller, arg)
        if session_id:
            controller.delete_archived(session_id)
            console.print("Konversationen togs bort.\n")
    elif name == "/referral":
        handle_referral(controller)
    else:
        console.print(Markdown(HELP_TEXT), "\n")
    return True


def main():
    """Main chat loop."""
    configure_logging()
    store = SqliteStore()
    users = UserRepository(store)

    console.print("[bold blue]Välkommen till OTAI![/bold blue]")
    console.print("Skriv /help för kommandon eller /quit för att avsluta.\n")

    user = sign_in(users)
    if user is None:
        console.print("\n[bold blue]Hej då![/bold blue]")
        return

    controller = ChatController(user, store)
    for message in controller.load():
        print_message(message)

    is_tty = sys.stdin.isatty()

    while True:
        try:
            user_input = console.input("[bold green]Du:[/bold green] ").strip()
            # Echo input when stdin is piped (not interactive)
            if not is_tty and user_input:
                console.print(f"[dim]{user_input}[/dim]")
        except (EOFError, KeyboardInterrupt):
            console.print("\n[bold blue]Hej då![/bold blue]")
            break

        if not user_input:
            continue

        # Lazy expiry: an idle session is archived when we next look at it
        if controller.refresh():
            console.print("[dim]Den förra konversationen var inaktiv i över 3 timmar och har arkiverats.[/dim]\n")

        if user_input.startswith("/"):
            if not handle_command(controller, user_input):
                console.print("[bold blue]Hej då![/bold blue]")
                break
            continue

        try:
            with Status("OTAI skriver...", console=console, spinner="dots"):
                reply = controller.send_message(user_input)
            if reply:
                print_message(reply)
            if controller.suggest_referral:
                console.print("[bold magenta]Tips:[/bold magenta] skriv /referral för att skapa en remiss.\n")
        except Exception as e:
            console.print(f"[bold red]Error:[/bold red] {e}\n")


if __name__ == "__main__":
    main()
