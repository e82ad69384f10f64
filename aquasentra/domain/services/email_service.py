"""
Email Service for Aquasentra

Sends welcome, report-status and critical-hazard emails through SendGrid.
Runs in mock mode (log only) when SENDGRID_API_KEY is not set.
"""
import asyncio
import html as html_lib
import logging
from typing import List, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To
from starlette.concurrency import run_in_threadpool

from aquasentra.core.config import settings

logger = logging.getLogger(__name__)


def report_alert_details(report) -> dict:
    """Snapshot of the report fields used by alert emails (safe to use after the session closes)."""
    return {
        "public_code": report.public_code,
        "hazard_type": report.hazard_type,
        "severity": report.severity,
        "description": report.description,
        "address": report.address,
        "latitude": report.latitude,
        "longitude": report.longitude,
    }


class EmailService:
    """
    Email service using SendGrid.
    Every send returns True/False and never raises to the caller.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ):
        self.api_key = settings.SENDGRID_API_KEY if api_key is None else api_key
        self.from_email = from_email or settings.SENDGRID_FROM_EMAIL
        self.from_name = from_name or settings.SENDGRID_FROM_NAME
        self._client: Optional[SendGridAPIClient] = None

        if self.api_key:
            self._client = SendGridAPIClient(self.api_key)
            logger.info("SendGrid client initialized")
        else:
            logger.info("SENDGRID_API_KEY not set, email service running in mock mode")

    @property
    def is_mock(self) -> bool:
        return self._client is None

    async def _send(self, to_email: str, subject: str, html_content: str) -> bool:
        if self.is_mock:
            logger.info(f"[MOCK EMAIL] To: {to_email} | Subject: {subject}")
            return True

        message = Mail(
            from_email=Email(self.from_email, self.from_name),
            to_emails=To(to_email),
            subject=subject,
            html_content=html_content,
        )

        try:
            response = await run_in_threadpool(self._client.send, message)
        except Exception as e:
            logger.error(f"Error sending email to {to_email}: {e}")
            return False

        if response.status_code in (200, 201, 202):
            logger.info(f"Email sent to {to_email}: {subject}")
            return True

        logger.warning(f"SendGrid returned status {response.status_code} for {to_email}")
        return False

    async def send_welcome_email(self, email: str, full_name: str) -> bool:
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <div style="background: #0284c7; color: white; padding: 30px; text-align: center;">
                <h1 style="margin: 0;">Welcome to Aquasentra</h1>
                <p style="margin: 10px 0 0 0;">Ocean Hazard Monitoring System</p>
            </div>
            <div style="background: #f8fafc; padding: 30px;">
                <h2>Hello {html_lib.escape(full_name)}!</h2>
                <p>Thank you for joining Aquasentra. Your reports help keep coastal
                communities safe with real-time hazard information.</p>
                <ul>
                    <li>Submit hazard reports with photos and location data</li>
                    <li>View verified reports on the interactive map</li>
                    <li>Track your contribution to community safety</li>
                </ul>
                <p style="text-align: center;">
                    <a href="{settings.FRONTEND_URL}">Start Exploring</a>
                </p>
            </div>
        </div>
        """
        return await self._send(
            email, "Welcome to Aquasentra - Ocean Hazard Monitoring System", html
        )

    async def send_report_status_email(
        self,
        email: str,
        full_name: str,
        report_code: str,
        status: str,
        rejection_reason: Optional[str] = None,
    ) -> bool:
        """Notify a submitter that their report was verified or rejected."""
        status_text = "Verified" if status == "verified" else "Rejected"
        reason_block = ""
        if rejection_reason:
            reason_block = f"""
                <div style="background: #fef2f2; border: 1px solid #fecaca; padding: 15px;">
                    <h4 style="color: #dc2626; margin-top: 0;">Rejection Reason:</h4>
                    <p>{html_lib.escape(rejection_reason)}</p>
                </div>
            """
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Report {status_text}</h2>
            <p>Hello {html_lib.escape(full_name)},</p>
            <p>Your hazard report <strong>{report_code}</strong> has been {status_text.lower()}.</p>
            {reason_block}
            <p><a href="{settings.FRONTEND_URL}/reports/{report_code}">View Report Details</a></p>
            <p style="color: #64748b;">Thank you for contributing to coastal community safety.</p>
        </div>
        """
        return await self._send(email, f"Report {status_text} - {report_code}", html)

    async def send_critical_report_alert(self, email: str, details: dict) -> bool:
        hazard = details["hazard_type"]
        location = details.get("address") or f"{details['latitude']}, {details['longitude']}"
        html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <div style="background: #dc2626; color: white; padding: 20px; text-align: center;">
                <h1 style="margin: 0;">CRITICAL HAZARD ALERT</h1>
            </div>
            <div style="padding: 30px; border: 2px solid #fecaca;">
                <h3>Hazard Type: {hazard.replace('-', ' ').upper()}</h3>
                <p><strong>Severity:</strong> {details['severity'].upper()}</p>
                <p><strong>Location:</strong> {html_lib.escape(str(location))}</p>
                <p><strong>Description:</strong> {html_lib.escape(details['description'])}</p>
                <p><strong>Report ID:</strong> {details['public_code']}</p>
                <p><a href="{settings.FRONTEND_URL}/map?reportId={details['public_code']}">VIEW ON MAP</a></p>
                <p><strong>This is an automated alert for critical ocean hazards. Take appropriate safety measures.</strong></p>
            </div>
        </div>
        """
        return await self._send(email, f"CRITICAL HAZARD ALERT - {hazard}", html)

    async def send_bulk_emergency_alert(self, emails: List[str], details: dict) -> dict:
        """
        Send the critical alert to every recipient concurrently.

        Returns:
            {"successful": n, "failed": m} counted per recipient
        """
        results = await asyncio.gather(
            *(self.send_critical_report_alert(email, details) for email in emails),
            return_exceptions=True,
        )

        successful = sum(1 for r in results if r is True)
        failed = len(results) - successful

        for email, result in zip(emails, results):
            if isinstance(result, Exception):
                logger.error(f"Emergency alert to {email} failed: {result}")

        logger.info(f"Bulk emergency alert sent: {successful} successful, {failed} failed")
        return {"successful": successful, "failed": failed}
