from __future__ import annotations

from cotacoes.infrastructure.repositories.base import BaseRepository


class ContactRepository(BaseRepository):
    json_columns = ("tags",)

    def get_by_id(self, db, contact_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM email_contacts WHERE id = ? AND tenant_id = ? LIMIT 1",
            (contact_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def find_by_email(self, db, email: str) -> dict | None:
        row = db.execute(
            "SELECT * FROM email_contacts WHERE email = ? AND tenant_id = ? LIMIT 1",
            (email, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            "SELECT * FROM email_contacts WHERE tenant_id = ? ORDER BY name, email",
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def create(self, db, contact: dict) -> int:
        cursor = db.execute(
            """
            INSERT INTO email_contacts (email, name, client_type, group_id, region, state, tags, status, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'active', ?)
            RETURNING id
            """,
            (
                contact["email"],
                contact.get("name"),
                contact.get("client_type"),
                contact.get("group_id"),
                contact.get("region"),
                contact.get("state"),
                self.dump_json(list(contact.get("tags") or [])),
                self.tenant_id,
            ),
        )
        return self.inserted_id(cursor)

    def update(self, db, contact_id: int, fields: dict) -> None:
        self.update_fields(db, "email_contacts", contact_id, fields)


class CampaignRepository(BaseRepository):
    json_columns = ("target_segment",)

    def get_by_id(self, db, campaign_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM email_campaigns WHERE id = ? AND tenant_id = ? LIMIT 1",
            (campaign_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_all(self, db) -> list[dict]:
        rows = db.execute(
            "SELECT * FROM email_campaigns WHERE tenant_id = ? ORDER BY created_at DESC, id DESC",
            (self.tenant_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def create(
        self,
        db,
        *,
        name: str,
        subject: str,
        html_content: str,
        text_content: str | None,
        target_segment: dict,
        created_by: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO email_campaigns (
                name, subject, html_content, text_content, target_segment, status, created_by, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, 'draft', ?, ?)
            RETURNING id
            """,
            (name, subject, html_content, text_content, self.dump_json(target_segment), created_by, self.tenant_id),
        )
        return self.inserted_id(cursor)

    def update(self, db, campaign_id: int, fields: dict) -> None:
        if "target_segment" in fields:
            fields = {**fields, "target_segment": self.dump_json(fields["target_segment"] or {})}
        self.update_fields(db, "email_campaigns", campaign_id, fields)

    def record_recipient(
        self,
        db,
        *,
        campaign_id: int,
        contact_id: int | None,
        email: str,
        status: str,
        error: str | None,
        sent_at: str,
    ) -> None:
        # One row per address; a retry replaces the earlier failure.
        db.execute(
            "DELETE FROM email_campaign_recipients WHERE campaign_id = ? AND email = ? AND tenant_id = ?",
            (campaign_id, email, self.tenant_id),
        )
        db.execute(
            """
            INSERT INTO email_campaign_recipients (campaign_id, contact_id, email, status, error, sent_at, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (campaign_id, contact_id, email, status, error, sent_at, self.tenant_id),
        )

    def delivered_emails(self, db, campaign_id: int) -> set[str]:
        rows = db.execute(
            """
            SELECT email FROM email_campaign_recipients
            WHERE campaign_id = ? AND tenant_id = ? AND status = 'delivered'
            """,
            (campaign_id, self.tenant_id),
        ).fetchall()
        return {str(row["email"]).lower() for row in rows}

    def list_recipients(self, db, campaign_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, contact_id, email, status, error, sent_at
            FROM email_campaign_recipients
            WHERE campaign_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (campaign_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)
