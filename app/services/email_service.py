# Checkout notifications
import os
import resend
from typing import Dict
from dotenv import load_dotenv

load_dotenv()


def format_checkout_email_data(invoice, currency_symbol="₹", salon_name=None) -> Dict:
    """
    Flatten a committed invoice into the fields the receipt email renders.
    """

    def _money(value):
        return f"{currency_symbol}{float(value or 0):,.2f}"

    items = []
    for item in invoice.items or []:
        items.append(
            {
                "name": item.get("name"),
                "kind": item.get("kind"),
                "quantity": item.get("quantity", 1),
                "price": _money(item.get("price")),
                "line_total": _money(item.get("line_total")),
            }
        )

    discount_label = invoice.discount_description or "Discount"
    if invoice.coupon_is_capped and invoice.coupon_original_discount is not None:
        discount_label = (
            f"{discount_label} (capped from {_money(invoice.coupon_original_discount)})"
        )

    return {
        "salon_name": salon_name or os.getenv("SALON_NAME", "Velvet Salon"),
        "invoice_id": invoice.invoice_id,
        "date": invoice.created_at.strftime("%d %b %Y, %I:%M %p") if invoice.created_at else "",
        "customer_name": invoice.customer_name or "Customer",
        "customer_phone": invoice.customer_phone or "",
        "items": items,
        "subtotal": _money(invoice.subtotal),
        "has_discount": float(invoice.discount_amount or 0) != 0,
        "discount_label": discount_label,
        "discount_amount": _money(invoice.discount_amount),
        "total_amount": _money(invoice.total_amount),
        "paid_amount": _money(invoice.paid_amount),
        "balance": _money(invoice.balance),
        "payment_mode": (invoice.payment_mode or "").upper(),
        "status": invoice.status,
        "points_used": invoice.points_used or 0,
        "points_earned": invoice.loyalty_points_earned or 0,
    }


class EmailService:
    """
    Centralized email service using Resend
    """

    def __init__(self):
        """Initialize Resend with API key"""
        if os.getenv("TESTING") in ("1", "True"):
            self.disabled = True
            self.api_key = None
            self.from_email = "test@example.com"
            print("⚠️ EmailService running in TEST MODE — no API key required")
            return

        self.api_key = os.getenv("RESEND_API_KEY")
        self.from_email = os.getenv("RESEND_FROM_EMAIL", "onboarding@resend.dev")
        if not self.api_key:
            self.disabled = True
            print("⚠️ RESEND_API_KEY not set, checkout emails are disabled")
            return

        self.disabled = False
        resend.api_key = self.api_key

    def send_checkout_receipt(self, to_email: str, email_data: Dict) -> Dict:
        """
        Send the checkout summary for a committed invoice

        Args:
            to_email: Recipient email address (usually the salon owner)
            email_data: Output of format_checkout_email_data

        Returns:
            Dict with 'success' boolean and 'message' or 'error'
        """
        if self.disabled:
            return {"success": False, "error": "Email service disabled"}
        if not to_email:
            return {"success": False, "error": "No recipient configured"}

        try:
            rows_html = "".join(
                f"""
                    <tr>
                        <td style="padding: 8px 0; color: #2d3748;">{item['name']} x {item['quantity']}</td>
                        <td style="padding: 8px 0; color: #2d3748; text-align: right;">{item['line_total']}</td>
                    </tr>"""
                for item in email_data["items"]
            )

            discount_html = ""
            if email_data["has_discount"]:
                discount_html = f"""
                    <tr>
                        <td style="padding: 8px 0; color: #4A5F4A;">{email_data['discount_label']}</td>
                        <td style="padding: 8px 0; color: #4A5F4A; text-align: right;">-{email_data['discount_amount']}</td>
                    </tr>"""

            html_content = f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="UTF-8">
        </head>
        <body style="margin: 0; padding: 0; font-family: 'Segoe UI', Arial, sans-serif; background-color: #f4f1f8;">
            <table width="100%" cellpadding="0" cellspacing="0" style="padding: 30px 20px;">
                <tr>
                    <td align="center">
                        <table width="600" cellpadding="0" cellspacing="0" style="background-color: #ffffff; border-radius: 16px; padding: 40px;">
                            <tr>
                                <td>
                                    <h2 style="color: #4A3F5F; margin: 0 0 6px 0;">{email_data['salon_name']} - Checkout</h2>
                                    <p style="color: #718096; margin: 0 0 24px 0;">Invoice {email_data['invoice_id']} &middot; {email_data['date']}</p>
                                    <p style="color: #2d3748; margin: 0 0 16px 0;">
                                        Customer: <strong>{email_data['customer_name']}</strong> {email_data['customer_phone']}
                                    </p>
                                    <table width="100%" cellpadding="0" cellspacing="0">
                                        {rows_html}
                                        <tr>
                                            <td style="padding: 8px 0; border-top: 1px solid #e2e8f0;">Subtotal</td>
                                            <td style="padding: 8px 0; border-top: 1px solid #e2e8f0; text-align: right;">{email_data['subtotal']}</td>
                                        </tr>
                                        {discount_html}
                                        <tr>
                                            <td style="padding: 8px 0; font-weight: 700;">Total</td>
                                            <td style="padding: 8px 0; font-weight: 700; text-align: right;">{email_data['total_amount']}</td>
                                        </tr>
                                        <tr>
                                            <td style="padding: 8px 0;">Paid ({email_data['payment_mode']})</td>
                                            <td style="padding: 8px 0; text-align: right;">{email_data['paid_amount']}</td>
                                        </tr>
                                    </table>
                                    <p style="color: #718096; margin: 24px 0 0 0; font-size: 14px;">
                                        Points used: {email_data['points_used']} &middot; Points earned: {email_data['points_earned']}
                                    </p>
                                </td>
                            </tr>
                        </table>
                    </td>
                </tr>
            </table>
        </body>
        </html>
        """

            params = {
                "from": self.from_email,
                "to": [to_email],
                "subject": f"Checkout {email_data['invoice_id']} - {email_data['customer_name']} ({email_data['total_amount']})",
                "html": html_content,
            }

            email = resend.Emails.send(params)

            return {
                "success": True,
                "message": f"Checkout email sent to {to_email}",
                "email_id": email.get("id"),
            }

        except Exception as e:
            print(f"Error sending checkout email: {str(e)}")
            return {"success": False, "error": str(e)}


# Create a singleton instance
email_service = EmailService()
