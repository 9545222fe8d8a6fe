import json

from sqlalchemy import select
from starlette.responses import JSONResponse

from tests.form.base import FormTestBase, document_form, post_form
from tests.form.models import Comment, Document, Post


def _json(response):
    return json.loads(response.body)


class FormDestroyTests(FormTestBase):
    def test_first_delete_soft_deletes_and_keeps_files(self):
        with self.SessionLocal() as db:
            post_id = self.create_post(db, cover="images/cover.png").id

        with self.SessionLocal() as db:
            response = post_form(db, self.storage).destroy(str(post_id))

        self.assertEqual(_json(response), {"status": True, "message": "Delete succeeded"})
        self.assertEqual(self.storage.deleted, [])
        with self.SessionLocal() as db:
            post = db.get(Post, post_id)
            self.assertTrue(post.trashed())

    def test_deleting_a_trashed_record_purges_files_and_row(self):
        with self.SessionLocal() as db:
            post = self.create_post(db, cover="images/cover.png")
            post.comments.append(Comment(body="c"))
            post.soft_delete()
            db.commit()
            post_id = post.id

        with self.SessionLocal() as db:
            response = post_form(db, self.storage).destroy(str(post_id))

        self.assertIs(_json(response)["status"], True)
        self.assertEqual(self.storage.deleted, ["images/cover.png"])
        with self.SessionLocal() as db:
            self.assertIsNone(db.get(Post, post_id))
            self.assertEqual(db.scalars(select(Comment)).all(), [])

    def test_hard_delete_model_removes_files_immediately(self):
        with self.SessionLocal() as db:
            document = Document(title="doc", attachment="files/doc.pdf")
            db.add(document)
            db.commit()
            document_id = document.id

        with self.SessionLocal() as db:
            document_form(db, self.storage).destroy(str(document_id))

        self.assertEqual(self.storage.deleted, ["files/doc.pdf"])
        with self.SessionLocal() as db:
            self.assertIsNone(db.get(Document, document_id))

    def test_comma_separated_ids_are_best_effort(self):
        with self.SessionLocal() as db:
            first = Document(title="first")
            second = Document(title="second")
            db.add_all([first, second])
            db.commit()
            first_id, second_id = first.id, second.id

        with self.SessionLocal() as db:
            response = document_form(db, self.storage).destroy(f"{first_id},999999,{second_id}")

        body = _json(response)
        self.assertIs(body["status"], False)
        self.assertEqual(body["message"], "Record not found")
        with self.SessionLocal() as db:
            self.assertIsNone(db.get(Document, first_id))
            self.assertIsNotNone(db.get(Document, second_id))

    def test_deleting_hook_can_short_circuit(self):
        with self.SessionLocal() as db:
            document = Document(title="protected")
            db.add(document)
            db.commit()
            document_id = document.id

        with self.SessionLocal() as db:
            form = document_form(db, self.storage)
            form.deleting(lambda submission: JSONResponse({"status": False, "message": "locked"}))
            response = form.destroy(str(document_id))

        self.assertEqual(_json(response), {"status": False, "message": "locked"})
        with self.SessionLocal() as db:
            self.assertIsNotNone(db.get(Document, document_id))

    def test_deleted_hook_runs_after_the_loop(self):
        seen = []
        with self.SessionLocal() as db:
            document = Document(title="gone")
            db.add(document)
            db.commit()
            document_id = document.id

        with self.SessionLocal() as db:
            form = document_form(db, self.storage)
            form.deleted(lambda submission: seen.append(submission.key))
            form.destroy(str(document_id))

        self.assertEqual(seen, [str(document_id)])
