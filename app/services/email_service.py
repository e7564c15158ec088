"""Email notification service using SendGrid."""

import asyncio
import logging
from datetime import datetime
from html import escape
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from app.core.config import settings

logger = logging.getLogger(__name__)


def format_display_date(value: str) -> str:
    """Render "2024-05-01" as "Wednesday, May 01, 2024"; leave anything else as is."""
    if not value or "," in value:
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").strftime("%A, %B %d, %Y")
    except ValueError:
        return value


class EmailService:
    """Email service for appointment negotiation notifications."""

    def __init__(self, api_key: Optional[str] = None):
        """Initialize email service."""
        self.api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.from_email = settings.SENDGRID_FROM_EMAIL
        self.from_name = settings.SENDGRID_FROM_NAME

        if not self.api_key:
            logger.warning("SENDGRID_API_KEY not configured. Emails will not be sent.")
            self.client = None
            self.enabled = False
        else:
            self.client = SendGridAPIClient(self.api_key)
            self.enabled = True
            logger.info("Email service initialized successfully")

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        plain_body: Optional[str] = None,
    ) -> bool:
        """
        Send an email.

        Args:
            to: Recipient email address
            subject: Email subject
            html_body: HTML body content
            plain_body: Plain text body (optional)

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.enabled:
            logger.info("Email service disabled. Would have sent to %s: %s", to, subject)
            return False

        try:
            message = Mail(
                from_email=(self.from_email, self.from_name),
                to_emails=to,
                subject=subject,
                html_content=html_body,
            )

            if plain_body:
                message.plain_text_content = plain_body

            # The SendGrid client is synchronous; keep it off the event loop
            response = await asyncio.to_thread(self.client.send, message)

            if 200 <= response.status_code < 300:
                logger.info("Email sent successfully to %s: %s", to, subject)
                return True

            logger.error("Failed to send email to %s: %s %s", to, response.status_code, response.body)
            return False

        except Exception as e:
            logger.error("Error sending email to %s: %s", to, e)
            return False

    async def send_reschedule_approval(
        self,
        business_email: str,
        service: str,
        original_date: str,
        original_time: str,
        new_date: str,
        new_time: str,
        customer_name: str,
        customer_phone: Optional[str],
        action_url: str,
    ) -> bool:
        """
        Tell the business the customer accepted their proposed time.

        Returns:
            True if sent successfully, False otherwise
        """
        subject = f"{customer_name} Approved Your Appointment Time Change"
        phone_line = f"<p><strong>Phone:</strong> {escape(customer_phone)}</p>" if customer_phone else ""

        html_body = f"""
        <html>
            <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
                <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                    <h2 style="color: #7c3aed;">Appointment Time Change Approved</h2>

                    <p>Good news! {escape(customer_name)} has approved your request to change the time of their {escape(service)} appointment.</p>

                    <div style="background-color: #f9fafb; padding: 15px; border-radius: 5px; margin: 20px 0;">
                        <h3>Previous Appointment</h3>
                        <p><strong>Date:</strong> {escape(format_display_date(original_date))}</p>
                        <p><strong>Time:</strong> {escape(original_time)}</p>
                    </div>

                    <div style="background-color: #f0fff4; padding: 15px; border-radius: 5px; margin: 20px 0;">
                        <h3>New Confirmed Time</h3>
                        <p><strong>Date:</strong> {escape(format_display_date(new_date))}</p>
                        <p><strong>Time:</strong> {escape(new_time)}</p>
                    </div>

                    <div style="margin: 20px 0;">
                        <p><strong>Customer:</strong> {escape(customer_name)}</p>
                        {phone_line}
                    </div>

                    <p>
                        <a href="{escape(action_url)}"
                           style="display: inline-block; padding: 12px 24px; background-color: #7c3aed;
                                  color: white; text-decoration: none; border-radius: 5px;">
                            View Appointments
                        </a>
                    </p>
                </div>
            </body>
        </html>
        """

        plain_body = f"""
        Appointment Time Change Approved

        {customer_name} has approved your request to change the time of their {service} appointment.

        Previous: {format_display_date(original_date)} at {original_time}
        New:      {format_display_date(new_date)} at {new_time}

        Customer: {customer_name}
        {f'Phone: {customer_phone}' if customer_phone else ''}

        View appointments: {action_url}
        """

        return await self.send_email(business_email, subject, html_body, plain_body)

    async def send_appointment_cancellation(
        self,
        recipient_email: str,
        recipient_type: str,
        service: str,
        date: str,
        time: str,
        canceled_by: str,
        canceler_name: str,
        other_party_name: str,
        other_party_phone: Optional[str],
        action_url: str,
    ) -> bool:
        """
        Notify one party that an appointment was cancelled.

        Args:
            recipient_type: "user" or "business"
            canceled_by: "user" or "business"

        Returns:
            True if sent successfully, False otherwise
        """
        subject = f"{service} Appointment Canceled"
        display_date = format_display_date(date)

        if canceled_by == recipient_type:
            summary = f"You have canceled your {service} appointment on {display_date} at {time}."
        else:
            summary = (
                f"Your {service} appointment on {display_date} at {time} "
                f"has been canceled by {canceler_name}."
            )
        phone_line = f"<p><strong>Phone:</strong> {escape(other_party_phone)}</p>" if other_party_phone else ""

        html_body = f"""
        <html>
            <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
                <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                    <h2 style="color: #ef4444;">Appointment Canceled</h2>

                    <p>{escape(summary)}</p>

                    <div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px; margin: 20px 0;">
                        <p><strong>Service:</strong> {escape(service)}</p>
                        <p><strong>Date:</strong> {escape(display_date)}</p>
                        <p><strong>Time:</strong> {escape(time)}</p>
                        <p><strong>With:</strong> {escape(other_party_name)}</p>
                        {phone_line}
                    </div>

                    <p>
                        <a href="{escape(action_url)}"
                           style="display: inline-block; padding: 12px 24px; background-color: #7c3aed;
                                  color: white; text-decoration: none; border-radius: 5px;">
                            View Appointments
                        </a>
                    </p>
                </div>
            </body>
        </html>
        """

        plain_body = f"""
        Appointment Canceled

        {summary}

        Service: {service}
        Date: {display_date}
        Time: {time}
        With: {other_party_name}

        View appointments: {action_url}
        """

        return await self.send_email(recipient_email, subject, html_body, plain_body)

    async def send_reschedule_request(
        self,
        user_email: str,
        service: str,
        original_date: str,
        original_time: str,
        new_date: str,
        new_time: str,
        business_name: str,
        business_phone: Optional[str],
        action_url: str,
    ) -> bool:
        """Ask the customer to accept or reject a new time proposed by the business."""
        subject = f"Appointment Time Change Request from {business_name}"
        phone_line = f"<p>Questions? Call {escape(business_name)} at {escape(business_phone)}.</p>" if business_phone else ""

        html_body = f"""
        <html>
            <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
                <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                    <h2 style="color: #7c3aed;">Appointment Time Change Request</h2>

                    <p>{escape(business_name)} has asked to move your {escape(service)} appointment.</p>

                    <div style="background-color: #f9fafb; padding: 15px; border-radius: 5px; margin: 20px 0;">
                        <p><strong>Current:</strong> {escape(format_display_date(original_date))} at {escape(original_time)}</p>
                        <p><strong>Proposed:</strong> {escape(format_display_date(new_date))} at {escape(new_time)}</p>
                    </div>

                    {phone_line}

                    <p>
                        <a href="{escape(action_url)}"
                           style="display: inline-block; padding: 12px 24px; background-color: #7c3aed;
                                  color: white; text-decoration: none; border-radius: 5px;">
                            Respond to Request
                        </a>
                    </p>
                </div>
            </body>
        </html>
        """

        plain_body = f"""
        Appointment Time Change Request

        {business_name} has asked to move your {service} appointment.

        Current:  {format_display_date(original_date)} at {original_time}
        Proposed: {format_display_date(new_date)} at {new_time}

        Respond: {action_url}
        """

        return await self.send_email(user_email, subject, html_body, plain_body)


# Global email service instance
email_service = EmailService()
