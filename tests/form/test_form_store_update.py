import json

from sqlalchemy import select
from starlette.responses import JSONResponse

from tests.form.base import FormTestBase, document_form, fake_upload, post_form
from tests.form.models import Comment, Document, Post, PostDetail, Reaction, Tag, User

from crudform.form import Form, RecordNotFound
from crudform.form.responses import FlashRedirectResponse


def _json(response):
    return json.loads(response.body)


class FormStoreTests(FormTestBase):
    def test_store_writes_record_and_every_relation(self):
        with self.SessionLocal() as db:
            first, second = Tag(name="first"), Tag(name="second")
            db.add_all([first, second])
            db.commit()
            tag_ids = [first.id, second.id]

            response = post_form(db, self.storage).store(
                {
                    "title": "Hello",
                    "published": False,
                    "meta": {"color": "red"},
                    "options": ["a", "c"],
                    "detail": {"summary": "short"},
                    "comments": [{"body": "first!", "reactions": [{"emoji": "+1"}, {"emoji": "heart"}]}],
                    "tags": tag_ids,
                },
                self.ctx(),
            )

        self.assertIsInstance(response, FlashRedirectResponse)
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers["location"], "/posts")
        self.assertEqual(response.flash["status"], "success")

        with self.SessionLocal() as db:
            post = db.scalars(select(Post)).one()
            self.assertEqual(post.title, "Hello")
            self.assertIs(post.published, False)
            self.assertEqual(post.meta, {"color": "red"})
            self.assertEqual(json.loads(post.options), ["a", "c"])
            self.assertEqual(post.detail.summary, "short")
            self.assertEqual([comment.body for comment in post.comments], ["first!"])
            self.assertEqual([reaction.emoji for reaction in post.comments[0].reactions], ["+1", "heart"])
            self.assertEqual([tag.id for tag in post.tags], tag_ids)

    def test_store_uploads_files(self):
        with self.SessionLocal() as db:
            response = post_form(db, self.storage).store({"title": "With cover", "cover": fake_upload()}, self.ctx())

        self.assertEqual(response.status_code, 303)
        with self.SessionLocal() as db:
            post = db.scalars(select(Post)).one()
            self.assertIn(post.cover, self.storage.objects)

    def test_validation_failure_for_ajax_returns_structured_payload(self):
        with self.SessionLocal() as db:
            response = post_form(db, self.storage).store({"title": ""}, self.ajax())
            self.assertEqual(db.scalars(select(Post)).all(), [])

        self.assertIsInstance(response, JSONResponse)
        body = _json(response)
        self.assertIs(body["status"], False)
        self.assertIn("title", body["validation"])
        self.assertTrue(body["message"])

    def test_validation_failure_for_page_redirects_back_with_errors(self):
        with self.SessionLocal() as db:
            response = post_form(db, self.storage).store(
                {"title": "", "body": "kept"},
                self.ctx(previous_url="/posts/create"),
            )

        self.assertIsInstance(response, FlashRedirectResponse)
        self.assertEqual(response.headers["location"], "/posts/create")
        self.assertTrue(response.errors.has("title"))
        self.assertEqual(response.old_input["body"], "kept")

    def test_required_fields_fail_on_create_when_absent(self):
        with self.SessionLocal() as db:
            response = post_form(db, self.storage).store({"body": "no title"}, self.ajax())

        self.assertIn("title", _json(response)["validation"])

    def test_nested_row_errors_are_prefixed(self):
        with self.SessionLocal() as db:
            response = post_form(db, self.storage).store(
                {"title": "T", "comments": [{"body": "ok"}, {"body": ""}]},
                self.ajax(),
            )

        self.assertIn("comments.1.body", _json(response)["validation"])

    def test_ajax_success_carries_display_overrides(self):
        with self.SessionLocal() as db:
            form = Form(Post, db)
            form.add("text", "title", display=lambda record, value: value.upper())
            form.add("textarea", "body")
            response = form.store({"title": "shout"}, self.ajax())

        body = _json(response)
        self.assertIs(body["status"], True)
        self.assertEqual(body["display"], {"title": "SHOUT"})

    def test_unknown_many_to_many_ids_abort_the_whole_write(self):
        with self.SessionLocal() as db:
            with self.assertRaises(RecordNotFound):
                post_form(db, self.storage).store({"title": "T", "tags": [999]}, self.ctx())

        with self.SessionLocal() as db:
            self.assertEqual(db.scalars(select(Post)).all(), [])

    def test_persistence_failure_rolls_back_and_reports(self):
        with self.SessionLocal() as db:
            form = Form(Document, db)
            form.add("textarea", "title")
            response = form.store({"title": None}, self.ajax())

        self.assertEqual(_json(response), {"status": False, "message": "Save failed"})
        with self.SessionLocal() as db:
            self.assertEqual(db.scalars(select(Document)).all(), [])

    def test_many_to_one_relation_is_created_and_associated(self):
        with self.SessionLocal() as db:
            form = Form(Post, db)
            form.add("text", "title")
            form.add("text", "author.name")
            form.add("email", "author.email")
            form.store({"title": "T", "author": {"name": "Ann", "email": "ann@example.com"}}, self.ctx())

        with self.SessionLocal() as db:
            post = db.scalars(select(Post)).one()
            author = db.scalars(select(User)).one()
            self.assertEqual(post.author_id, author.id)
            self.assertEqual((author.name, author.email), ("Ann", "ann@example.com"))


class FormUpdateTests(FormTestBase):
    def _post_with_comments(self, *bodies):
        with self.SessionLocal() as db:
            post = self.create_post(db, title="A")
            for body in bodies:
                post.comments.append(Comment(body=body))
            db.commit()
            return post.id, [comment.id for comment in post.comments]

    def test_one_to_many_rows_update_existing_and_insert_new(self):
        post_id, (first_id,) = self._post_with_comments("old")

        with self.SessionLocal() as db:
            response = post_form(db, self.storage).update(
                post_id,
                {"title": "B", "comments": [{"id": first_id, "body": "x"}, {"body": "y"}]},
                self.ctx(),
            )

        self.assertEqual(response.status_code, 303)
        with self.SessionLocal() as db:
            post = db.get(Post, post_id)
            self.assertEqual(post.title, "B")
            self.assertEqual([(c.id == first_id, c.body) for c in post.comments], [(True, "x"), (False, "y")])

    def test_removal_flag_deletes_child_without_writing_it(self):
        post_id, (keep_id, drop_id) = self._post_with_comments("keep", "drop")

        with self.SessionLocal() as db:
            post_form(db, self.storage).update(
                post_id,
                {"comments": [{"id": drop_id, "body": "changed", "_remove_": 1}]},
                self.ctx(),
            )

        with self.SessionLocal() as db:
            self.assertIsNone(db.get(Comment, drop_id))
            self.assertEqual(db.get(Comment, keep_id).body, "keep")

    def test_new_rows_receive_their_sub_relations(self):
        post_id, (first_id,) = self._post_with_comments("old")

        with self.SessionLocal() as db:
            post_form(db, self.storage).update(
                post_id,
                {
                    "comments": [
                        {"id": first_id, "reactions": [{"emoji": "+1"}]},
                        {"body": "new", "reactions": [{"emoji": "tada"}]},
                    ]
                },
                self.ctx(),
            )

        with self.SessionLocal() as db:
            comments = db.get(Post, post_id).comments
            self.assertEqual([c.body for c in comments], ["old", "new"])
            self.assertEqual([r.emoji for r in comments[0].reactions], ["+1"])
            self.assertEqual([r.emoji for r in comments[1].reactions], ["tada"])

    def test_many_to_many_is_a_set_sync(self):
        with self.SessionLocal() as db:
            tags = [Tag(name=str(index)) for index in (1, 2, 3)]
            db.add_all(tags)
            post = self.create_post(db)
            post.tags = tags[:2]
            db.commit()
            post_id = post.id
            one, two, three = (tag.id for tag in tags)

        with self.SessionLocal() as db:
            post_form(db, self.storage).update(post_id, {"tags": [two, three]}, self.ctx())

        with self.SessionLocal() as db:
            self.assertEqual({tag.id for tag in db.get(Post, post_id).tags}, {two, three})

    def test_absent_many_to_many_input_clears_membership(self):
        with self.SessionLocal() as db:
            tag = Tag(name="x")
            post = self.create_post(db)
            post.tags = [tag]
            db.commit()
            post_id = post.id

        with self.SessionLocal() as db:
            post_form(db, self.storage).update(post_id, {"title": "no tags"}, self.ctx())

        with self.SessionLocal() as db:
            self.assertEqual(db.get(Post, post_id).tags, [])

    def test_one_to_one_relation_is_updated_in_place(self):
        with self.SessionLocal() as db:
            post = self.create_post(db)
            post.detail = PostDetail(summary="before")
            db.commit()
            post_id, detail_id = post.id, post.detail.id

        with self.SessionLocal() as db:
            post_form(db, self.storage).update(post_id, {"detail": {"summary": "after"}}, self.ctx())

        with self.SessionLocal() as db:
            detail = db.get(Post, post_id).detail
            self.assertEqual((detail.id, detail.summary), (detail_id, "after"))

    def test_false_and_null_values_are_written(self):
        with self.SessionLocal() as db:
            post_id = self.create_post(db, published=True, body="text").id

        with self.SessionLocal() as db:
            post_form(db, self.storage).update(post_id, {"published": False, "body": None}, self.ctx())

        with self.SessionLocal() as db:
            post = db.get(Post, post_id)
            self.assertIs(post.published, False)
            self.assertIsNone(post.body)
            self.assertEqual(post.title, "Existing")

    def test_inline_edit_is_rewritten_before_persisting(self):
        with self.SessionLocal() as db:
            tag = Tag(name="kept")
            post = self.create_post(db)
            post.tags = [tag]
            db.commit()
            post_id = post.id

        with self.SessionLocal() as db:
            response = post_form(db, self.storage).update(
                post_id,
                {"_editable": True, "name": "title", "value": "Inline", "pk": post_id},
                self.ajax(),
            )

        self.assertEqual(_json(response)["status"], True)
        with self.SessionLocal() as db:
            post = db.get(Post, post_id)
            self.assertEqual(post.title, "Inline")
            self.assertEqual([tag.name for tag in post.tags], ["kept"])

    def test_inline_edit_validation_failure_is_a_422(self):
        with self.SessionLocal() as db:
            post_id = self.create_post(db).id

        with self.SessionLocal() as db:
            response = post_form(db, self.storage).update(
                post_id,
                {"_editable": True, "name": "title", "value": "", "pk": post_id},
                self.ajax(),
            )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(list(_json(response)["errors"]), ["title.0"])

    def test_orderable_moves_sortable_records(self):
        with self.SessionLocal() as db:
            upper = self.create_post(db, title="upper", sort_order=1)
            lower = self.create_post(db, title="lower", sort_order=2)
            upper_id, lower_id = upper.id, lower.id

        with self.SessionLocal() as db:
            response = post_form(db, self.storage).update(lower_id, {"_orderable": 1}, self.ctx())

        self.assertEqual(_json(response)["status"], True)
        with self.SessionLocal() as db:
            self.assertEqual(db.get(Post, lower_id).sort_order, 1)
            self.assertEqual(db.get(Post, upper_id).sort_order, 2)

    def test_orderable_on_unsortable_model_falls_through_to_update(self):
        with self.SessionLocal() as db:
            document = Document(title="doc")
            db.add(document)
            db.commit()
            document_id = document.id

        with self.SessionLocal() as db:
            response = document_form(db, self.storage).update(
                document_id,
                {"_orderable": 1, "title": "renamed"},
                self.ctx(resource_path="/documents"),
            )

        self.assertEqual(response.status_code, 303)
        with self.SessionLocal() as db:
            self.assertEqual(db.get(Document, document_id).title, "renamed")

    def test_update_of_missing_record_raises_not_found(self):
        with self.SessionLocal() as db:
            with self.assertRaises(RecordNotFound):
                post_form(db, self.storage).update(404, {"title": "x"}, self.ctx())

    def test_after_save_continue_editing(self):
        with self.SessionLocal() as db:
            post_id = self.create_post(db).id

        with self.SessionLocal() as db:
            response = post_form(db, self.storage).update(
                post_id,
                {"title": "again"},
                self.ctx(after_save="continue_editing"),
            )

        self.assertEqual(response.headers["location"], f"/posts/{post_id}/edit")

    def test_edit_returns_current_values(self):
        with self.SessionLocal() as db:
            post = self.create_post(db, title="Shown")
            post.detail = PostDetail(summary="s")
            post.tags = [Tag(name="t")]
            post.comments.append(Comment(body="c", reactions=[Reaction(emoji="+1")]))
            db.commit()
            post_id, tag_id = post.id, post.tags[0].id

        with self.SessionLocal() as db:
            payload = post_form(db, self.storage).edit(post_id)

        self.assertEqual(payload["key"], post_id)
        self.assertEqual(payload["values"]["title"], "Shown")
        self.assertEqual(payload["values"]["detail.summary"], "s")
        self.assertEqual(payload["values"]["tags"], [tag_id])
        self.assertEqual(payload["values"]["comments"][0]["body"], "c")
        self.assertEqual(payload["values"]["comments"][0]["reactions"][0]["emoji"], "+1")


class FlatAndRoundTripInputTests(FormTestBase):
    def test_flat_dotted_relation_input_is_saved(self):
        with self.SessionLocal() as db:
            response = post_form(db, self.storage).store({"title": "A", "detail.summary": "flat"}, self.ajax())

        self.assertIs(_json(response)["status"], True)
        with self.SessionLocal() as db:
            post = db.scalars(select(Post)).one()
            self.assertEqual(post.detail.summary, "flat")
            post_id = post.id

        with self.SessionLocal() as db:
            post_form(db, self.storage).update(post_id, {"detail.summary": "changed"}, self.ajax())

        with self.SessionLocal() as db:
            self.assertEqual(db.get(Post, post_id).detail.summary, "changed")

    def test_checkbox_values_survive_edit_and_resubmit(self):
        with self.SessionLocal() as db:
            post_form(db, self.storage).store({"title": "A", "options": ["a", "c"]}, self.ctx())
            post_id = db.scalars(select(Post)).one().id

        with self.SessionLocal() as db:
            values = post_form(db, self.storage).edit(post_id)["values"]

        self.assertEqual(values["options"], ["a", "c"])

        with self.SessionLocal() as db:
            response = post_form(db, self.storage).update(post_id, {"options": values["options"]}, self.ajax())

        self.assertIs(_json(response)["status"], True)
        with self.SessionLocal() as db:
            self.assertEqual(json.loads(db.get(Post, post_id).options), ["a", "c"])

    def test_new_row_with_only_sub_relation_input_is_created(self):
        def build_comment(nested):
            nested.add("has_many", "reactions", build=lambda rows: rows.add("text", "emoji", required=True))

        with self.SessionLocal() as db:
            form = Form(Post, db)
            form.add("text", "title")
            form.add("has_many", "comments", build=build_comment)
            response = form.store({"title": "T", "comments": [{"reactions": [{"emoji": "+1"}]}]}, self.ajax())

        self.assertIs(_json(response)["status"], True)
        with self.SessionLocal() as db:
            comment = db.scalars(select(Comment)).one()
            self.assertEqual(comment.body, "")
            self.assertEqual([reaction.emoji for reaction in comment.reactions], ["+1"])
