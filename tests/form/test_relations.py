from tests.form.base import FormTestBase, post_form
from tests.form.models import Comment, Post, PostDetail, Tag, User

from crudform.form import Form, FormConfigurationError
from crudform.form.relations import (
    ManyToManyRelation,
    ManyToOneRelation,
    OneToManyRelation,
    OneToOneRelation,
    RelationResolver,
    relation_handle,
    relation_inputs,
)


class RelationClassificationTests(FormTestBase):
    def test_relationships_are_classified_once(self):
        self.assertIsInstance(relation_handle(Post, "author"), ManyToOneRelation)
        self.assertIsInstance(relation_handle(Post, "detail"), OneToOneRelation)
        self.assertIsInstance(relation_handle(Post, "comments"), OneToManyRelation)
        self.assertIsInstance(relation_handle(Post, "tags"), ManyToManyRelation)
        self.assertIsNone(relation_handle(Post, "title"))
        self.assertIs(relation_handle(Post, "tags"), relation_handle(Post, "tags"))

    def test_handle_describes_related_model(self):
        handle = relation_handle(Post, "comments")
        self.assertIs(handle.related_model, Comment)
        self.assertEqual(handle.primary_key_name, "id")
        self.assertIs(relation_handle(Post, "author").related_model, User)
        self.assertIs(relation_handle(Post, "detail").related_model, PostDetail)
        self.assertIs(relation_handle(Post, "tags").related_model, Tag)

    def test_relation_inputs_keeps_only_relationship_keys(self):
        inputs = {"title": "A", "tags": [1], "comments": [], "detail": {"summary": "s"}}
        self.assertEqual(list(relation_inputs(Post, inputs)), ["tags", "comments", "detail"])

    def test_relation_inputs_gathers_flat_keys_by_root(self):
        inputs = {"title": "A", "detail.summary": "s", "meta.color": "red"}
        self.assertEqual(relation_inputs(Post, inputs), {"detail": {"summary": "s"}})


class RelationResolverTests(FormTestBase):
    def test_resolves_top_level_and_nested_paths_in_declaration_order(self):
        with self.SessionLocal() as db:
            relations = post_form(db, self.storage).relations()

        self.assertEqual(relations.names, ("detail", "comments", "comments.reactions", "tags"))
        self.assertEqual(relations.top_level(), ("detail", "comments", "tags"))
        self.assertEqual(relations.sub_relation_fields("comments"), ["reactions"])
        self.assertEqual(relations.sub_relation_fields("comments.reactions"), [])
        self.assertEqual([field.column for field in relations.fields_for("comments.reactions")], ["reactions"])

    def test_resolving_twice_gives_the_same_list(self):
        with self.SessionLocal() as db:
            form = post_form(db, self.storage)
            first = form.relations()
            second = form.relations()

        self.assertEqual(first.names, second.names)
        self.assertEqual(len(set(first.names)), len(first.names))

    def test_dotted_columns_without_relationship_are_not_relations(self):
        with self.SessionLocal() as db:
            form = Form(Post, db)
            form.add("text", "meta.color")
            form.add("text", "author.name")
            form.add("text", "author.email")

            relations = RelationResolver(Post, form.fields()).resolve()

        self.assertEqual(relations.names, ("author",))
        self.assertEqual(len(relations.fields_for("author")), 2)

    def test_nested_form_key_must_match_related_primary_key(self):
        with self.SessionLocal() as db:
            form = Form(Post, db)
            with self.assertRaises(FormConfigurationError):
                form.add("has_many", "comments", key_name="code")
