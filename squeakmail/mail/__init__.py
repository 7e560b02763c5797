"""Digest delivery: mailer interface, message building and transports."""

from squeakmail.mail.base import Mailer
from squeakmail.mail.transports import ConsoleTransport, SendmailTransport, SMTPTransport, Transport
from squeakmail.mail.mailer import DigestMailer, build_mailer, build_message

__all__ = [
    "Mailer",
    "Transport",
    "ConsoleTransport",
    "SendmailTransport",
    "SMTPTransport",
    "DigestMailer",
    "build_mailer",
    "build_message",
]
